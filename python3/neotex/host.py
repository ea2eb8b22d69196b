import vim
from neotex.window_stack import StaleSurfaceError

def _handle(obj):
    return getattr(obj, 'handle', obj)

class VimHost:
    """Surface capability of the window stack, backed by Neovim windows."""

    def current(self):
        return vim.current.window.handle

    def is_valid(self, handle):
        try:
            return bool(vim.api.nvim_win_is_valid(handle))
        except vim.error:
            return False

    def focus(self, handle):
        try:
            vim.api.nvim_set_current_win(handle)
        except vim.error as e:
            raise StaleSurfaceError(handle) from e

    def close(self, handle):
        try:
            vim.api.nvim_win_close(handle, True)
        except vim.error as e:
            raise StaleSurfaceError(handle) from e

    def buffer_of(self, handle):
        try:
            return _handle(vim.api.nvim_win_get_buf(handle))
        except vim.error as e:
            raise StaleSurfaceError(handle) from e

    def surfaces(self):
        return [_handle(w) for w in vim.api.nvim_list_wins()]
