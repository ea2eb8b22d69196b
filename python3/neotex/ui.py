import vim
from neotex import util, log, session
from neotex.himalaya import HimalayaError
from neotex.mailbox import Mailbox
from neotex.sync import resolve_sync_target, inbox_target
from neotex.window_stack import CURRENT, SurfaceKind

LIST_FILETYPE = 'himalaya-list'
EMAIL_FILETYPE = 'himalaya-email'
COMPOSE_FILETYPE = 'himalaya-compose'

# Lines of the sidebar above the first message.
HEADER_LINES = 4

def format_email_list(messages, account, folder, page, sync_status=None, selected=()):
    """
    Renders the sidebar. Returns (lines, line_map) where line_map maps the
    1-based line number of each message to its id. Messages in selected are
    marked with a "+".
    """
    lines = [
        f"Himalaya - {account} - {folder}",
        f"Page {page} | {len(messages)} emails" + (f" | {sync_status}" if sync_status else ''),
        "<CR> read | r reply | d delete | a archive | S spam | m move | <Space> select | gs sync | q close",
        "─" * 60,
    ]
    line_map = {}
    for message in messages:
        check = '+' if message.id in selected else ' '
        marker = ' ' if message.seen else '*'
        attachment = '@' if message.has_attachment else ' '
        sender = message.sender[:24]
        lines.append(f"{check}{marker}{attachment} {message.date[:16]:<16} {sender:<24} {message.subject}")
        line_map[len(lines)] = message.id
    if not messages:
        lines.append("  (no emails)")
    return lines, line_map

class EmailUI:
    """
    Application root of the email client. Owns the window stack and the
    session state and turns user commands into backend calls and windows.
    """

    def __init__(self, config, state, stack, client, syncer, bus):
        self.config = config
        self.state = state
        self.stack = stack
        self.client = client
        self.syncer = syncer
        self.bus = bus
        self.sidebar_win = None
        self.list_buffer = None
        self.messages = []
        self.line_map = {}
        self.page = 1
        self.sync_status = None
        self._sync_names = {}
        self.mailbox = Mailbox(client, state, self, is_headless=util.is_headless)

    # --- capabilities used by neotex.session and neotex.mailbox ---

    def notify(self, message, error=False):
        util.display_message(message, error=error, history=True)

    def select(self, items, prompt, on_choice):
        on_choice(util.select(items, prompt))

    def prompt_input(self, prompt):
        return util.prompt_input(prompt)

    def message_removed(self, email_id):
        """
        Forgets a message that left the current folder and closes the
        windows reading it.
        """
        if self.state.get_selected_email() == email_id:
            self.state.set_selected_email(None)
        for entry in self.stack.showing(email_id):
            if entry.handle == vim.current.window.handle:
                self.stack.close_current()
            else:
                self.stack.discard(entry.handle)
        self.refresh_email_list()

    # --- sidebar ---

    def is_sidebar_open(self):
        return self.sidebar_win is not None and self.stack.host.is_valid(self.sidebar_win)

    def toggle_email_sidebar(self):
        if self.is_sidebar_open():
            self.state.save()
            if not self.stack.discard(self.sidebar_win):
                vim.api.nvim_win_close(self.sidebar_win, True)
            self.sidebar_win = None
            return None
        return self.show_email_list()

    def show_email_list(self, account=None, folder=None, page=1, query=None):
        """
        Lists a folder in the sidebar, opening the sidebar if needed.
        Returns the sidebar window handle, or None if listing failed.
        """
        account = account or self.state.get_current_account() or self.config.get_default_account_name()
        folder = folder or self.state.get_current_folder() or 'INBOX'
        if not account:
            self.notify("No email account configured", error=True)
            return None

        try:
            messages = self.client.list(account, folder, page=page, query=query)
        except HimalayaError as e:
            self.notify(str(e), error=True)
            return None

        if account != self.state.get_current_account() or folder != self.state.get_current_folder():
            self.state.set_selected_email(None)
            self.mailbox.selection.clear()
        self.state.set_current_account(account)
        self.state.set_current_folder(folder)
        if query:
            self.state.set_search(query, [m.id for m in messages])
        self.page = page
        self.messages = messages

        self._redraw_list()
        self.state.save()
        return self.sidebar_win

    def _redraw_list(self, cursor_line=None):
        lines, self.line_map = format_email_list(
            self.messages, self.state.get_current_account(), self.state.get_current_folder(),
            self.page, self.sync_status, self.mailbox.selection)
        self._render_sidebar(lines)
        if cursor_line:
            vim.current.window.cursor = (min(cursor_line, len(lines)), 0)

    def _render_sidebar(self, lines):
        if self.is_sidebar_open():
            vim.api.nvim_set_current_win(self.sidebar_win)
        else:
            width, position = self.state.get_sidebar()
            window = util.new_split(position=position, size=width)
            self.list_buffer = util.scratch_buffer('Himalaya', LIST_FILETYPE)
            window.options['winfixwidth'] = True
            window.options['cursorline'] = True
            self.sidebar_win = window.handle
            self.stack.push(self.sidebar_win, parent=None, kind=SurfaceKind.LIST)

        util.set_modifiable(self.list_buffer, True)
        self.list_buffer[:] = lines
        util.set_modifiable(self.list_buffer, False)
        vim.current.window.cursor = (min(HEADER_LINES + 1, len(lines)), 0)

    def refresh_email_list(self):
        if self.is_sidebar_open():
            current = vim.current.window.handle
            self.show_email_list(page=self.page)
            if current != self.sidebar_win and self.stack.host.is_valid(current):
                vim.api.nvim_set_current_win(current)

    def next_page(self):
        self.show_email_list(page=self.page + 1)

    def prev_page(self):
        if self.page > 1:
            self.show_email_list(page=self.page - 1)

    def search_emails(self, query):
        if not query:
            query = util.prompt_input('Search emails: ')
        if query:
            self.show_email_list(page=1, query=query)

    def pick_folder(self):
        try:
            folders = self.client.list_folders(self.state.get_current_account() or None)
        except HimalayaError as e:
            self.notify(str(e), error=True)
            return
        folder = util.select(folders, 'Select folder:')
        if folder:
            self.show_email_list(folder=folder, page=1)

    def pick_account(self):
        account = util.select(self.config.account_names(), 'Select account:')
        if account:
            self.state.set_current_folder('INBOX')
            self.show_email_list(account=account, folder='INBOX', page=1)

    # --- reading ---

    def get_current_email_id(self):
        entry = self.stack.find(vim.current.window.handle)
        if entry is not None and entry.kind == SurfaceKind.READING:
            return entry.email_id
        if self.is_sidebar_open() and vim.current.window.handle == self.sidebar_win:
            line, _ = vim.current.window.cursor
            return self.line_map.get(line)
        return None

    def read_current_email(self):
        email_id = self.get_current_email_id()
        if email_id is None:
            self.notify("No email selected")
            return None
        return self.read_email(email_id)

    def read_email(self, email_id, parent=CURRENT):
        if parent is CURRENT:
            parent = vim.current.window.handle

        account = self.state.get_current_account()
        folder = self.state.get_current_folder()
        try:
            message = self.client.fetch(account, folder, email_id)
        except HimalayaError as e:
            self.notify(str(e), error=True)
            return None

        buf = vim.api.nvim_create_buf(False, True)
        buf[:] = message.content.split('\n')
        buf.options['filetype'] = EMAIL_FILETYPE
        buf.options['modifiable'] = False

        win = self.open_email_window(buf, f" Email {email_id} ", parent, email_id=email_id)
        self.state.set_selected_email(email_id)
        self.state.save()
        return win

    def open_email_window(self, buf, title, parent, email_id=None):
        """Opens buf in a centered floating window stacked on top of parent."""
        columns = vim.options['columns']
        rows = vim.options['lines']
        width = int(columns * 0.8)
        height = int(rows * 0.8)

        window = vim.api.nvim_open_win(buf, True, {
            'relative': 'editor',
            'width': width,
            'height': height,
            'row': (rows - height) // 2,
            'col': (columns - width) // 2,
            'style': 'minimal',
            'border': 'rounded',
            'title': title,
            'title_pos': 'center',
        })
        window.options['wrap'] = True
        window.options['linebreak'] = True
        window.options['cursorline'] = True

        self.stack.push(window.handle, parent=parent, kind=SurfaceKind.READING, email_id=email_id)
        return window.handle

    # --- composing ---

    def compose_email(self, to_address=None):
        self._compose('write', to_address=to_address)

    def reply_current_email(self, reply_all=False):
        email_id = self.get_current_email_id()
        if email_id is None:
            self.notify("No email to reply to", error=True)
            return
        self._compose('reply', email_id=email_id, reply_all=reply_all)

    def forward_current_email(self):
        email_id = self.get_current_email_id()
        if email_id is None:
            self.notify("No email to forward", error=True)
            return
        self._compose('forward', email_id=email_id)

    def _compose(self, kind, email_id=None, reply_all=False, to_address=None):
        parent = vim.current.window.handle
        try:
            template = self.client.template(kind, self.state.get_current_account(),
                                            self.state.get_current_folder(), email_id, reply_all)
        except HimalayaError as e:
            self.notify(str(e), error=True)
            return None

        lines = template.split('\n')
        if to_address:
            lines = [f"To: {to_address}" if l.startswith('To:') else l for l in lines]

        util.new_split(position='right')
        util.scratch_buffer(f"himalaya-compose-{kind}-{parent}", COMPOSE_FILETYPE, lines)
        vim.command('setlocal bufhidden=hide')
        handle = vim.current.window.handle
        self.stack.push(handle, parent=parent, kind=SurfaceKind.COMPOSE, email_id=email_id)

        # Cursor on the first empty header, or the body for replies.
        target = len(lines)
        if kind == 'write':
            for index, line in enumerate(lines):
                if line.endswith(':') or line.endswith(': '):
                    target = index + 1
                    break
        vim.current.window.cursor = (target, 0)
        vim.command('startinsert!')
        return handle

    def send_current_email(self):
        if self._compose_entry() is None:
            return
        template = '\n'.join(vim.current.buffer[:])
        try:
            self.client.send(template, account=self.state.get_current_account() or None)
        except HimalayaError as e:
            self.notify(f"Failed to send email: {e}", error=True)
            return
        self.notify("Email sent")
        self.stack.close_current()

    def _compose_entry(self):
        entry = self.stack.find(vim.current.window.handle)
        if entry is None or entry.kind != SurfaceKind.COMPOSE:
            self.notify("Not in a compose buffer", error=True)
            return None
        return entry

    def _close_compose(self):
        buf = vim.current.buffer
        self.stack.close_current()
        try:
            vim.api.nvim_buf_delete(buf, {'force': True})
        except vim.error as e:
            log.log_debug(f"_close_compose: {e}")

    def close_without_saving(self):
        """Throws the compose buffer away and returns to the window it came from."""
        if self._compose_entry() is None:
            return
        self._close_compose()
        self.notify("Draft discarded")

    def close_and_save_draft(self):
        """Saves the compose buffer as a draft, then closes it. Stays open if saving fails."""
        if self._compose_entry() is None:
            return
        template = '\n'.join(vim.current.buffer[:])
        if self.mailbox.save_draft(template):
            self._close_compose()

    # --- closing ---

    def close_current_view(self):
        current = vim.current.window.handle
        entry = self.stack.find(current)
        was_reading = entry is not None and entry.kind == SurfaceKind.READING

        if not self.stack.close_current() and self.stack.host.is_valid(current):
            try:
                vim.command('close')
            except vim.error as e:
                log.log_info(f"close_current_view: {e}")

        if current == self.sidebar_win:
            self.sidebar_win = None
        if was_reading:
            self.refresh_email_list()

    def close_himalaya(self):
        """Saves the session and closes every email window and buffer."""
        self.state.save()

        for buf in list(vim.api.nvim_list_bufs()):
            try:
                if buf.options['filetype'].startswith('himalaya-'):
                    vim.api.nvim_buf_delete(buf, {'force': True})
            except vim.error as e:
                log.log_debug(f"close_himalaya: {e}")

        self.stack.clear()
        self.sidebar_win = None
        self.list_buffer = None
        self.line_map = {}

    # --- message actions ---

    def _current_or_warn(self):
        email_id = self.get_current_email_id()
        if email_id is None:
            self.notify("No email selected", error=True)
        return email_id

    def delete_current_email(self):
        email_id = self._current_or_warn()
        if email_id is not None:
            self.mailbox.delete(email_id)

    def archive_current_email(self):
        email_id = self._current_or_warn()
        if email_id is not None:
            self.mailbox.archive(email_id)

    def spam_current_email(self):
        email_id = self._current_or_warn()
        if email_id is not None:
            self.mailbox.mark_spam(email_id)

    def move_current_email(self, folder=None):
        email_id = self._current_or_warn()
        if email_id is None:
            return
        if not folder:
            folders = self.mailbox.folders()
            if folders is None:
                return
            current_folder = self.state.get_current_folder()
            folder = util.select([f for f in folders if f != current_folder], f"Move email {email_id} to:")
        if folder:
            self.mailbox.move_to(email_id, folder)

    def toggle_selection(self):
        if not self.is_sidebar_open() or vim.current.window.handle != self.sidebar_win:
            self.notify("Selection works in the email list", error=True)
            return
        line, _ = vim.current.window.cursor
        email_id = self.line_map.get(line)
        if email_id is None:
            return
        self.mailbox.toggle_selection(email_id)
        self._redraw_list(cursor_line=line + 1)

    def clear_selection(self):
        self.mailbox.selection.clear()
        if self.is_sidebar_open() and vim.current.window.handle == self.sidebar_win:
            self._redraw_list()

    def delete_selected_emails(self):
        self.mailbox.delete_selected_emails()

    def archive_selected_emails(self):
        self.mailbox.archive_selected_emails()

    def spam_selected_emails(self):
        self.mailbox.spam_selected_emails()

    def move_selected_emails(self, folder=None):
        self.mailbox.move_selected_emails(folder or None)

    # --- sync ---

    def sync_current_folder(self):
        account = self.state.get_current_account()
        folder = self.state.get_current_folder()
        if not account or not folder:
            self.notify("No folder selected", error=True)
            return
        target, display_name = resolve_sync_target(account, self.config.get_account(account), folder)
        self._start_sync(target, display_name, account)

    def sync_inbox(self):
        account = self.state.get_current_account() or self.config.get_default_account_name()
        if not account:
            self.notify("No email account configured", error=True)
            return
        account_cfg = self.config.get_account(account)
        if account_cfg is None:
            self.notify("Account configuration not found", error=True)
            return
        self._start_sync(inbox_target(account_cfg), 'inbox', account)

    def _start_sync(self, target, display_name, account):
        self._sync_names[target] = display_name
        if self.syncer.sync(target, account=account) is None:
            self.notify(f"Sync for {display_name} is already running")
            return
        self.notify(f"Starting sync for {display_name}...")

    def on_sync_progress(self, event):
        progress = event.progress
        self.sync_status = f"Syncing {progress['boxes_done']}/{progress['boxes_total']}"
        util.display_message(f"{self._sync_names.get(event.target, event.target)}: {self.sync_status}")

    def on_sync_completed(self, event):
        self.sync_status = None
        display_name = self._sync_names.pop(event.target, event.target)
        if event.ok:
            self.notify(f"Sync completed for {display_name}")
        else:
            self.notify(f"Sync failed for {display_name}: {event.error}", error=True)
        self.refresh_email_list()

    def on_surface_closed(self, event):
        self.stack.mark_closed(event.handle)
        if event.handle == self.sidebar_win:
            self.sidebar_win = None

    # --- session ---

    def restore_session(self):
        return session.restore_session(self.state, self, headless=util.is_headless())

    def prompt_session_restore(self):
        return session.prompt_session_restore(self.state, self, headless=util.is_headless())
