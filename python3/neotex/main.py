import vim
from neotex import util, log, lectic
from neotex.config import Config
from neotex.events import EventBus, SurfaceClosed, SyncProgress, SyncCompleted, CommandCompleted, run_command_callback
from neotex.himalaya import HimalayaClient
from neotex.host import VimHost
from neotex.state import SessionState
from neotex.sync import Syncer
from neotex.ui import EmailUI
from neotex.window_stack import WindowStack

# The application root, built once by initialize().
_UI = None
_BUS = None

def initialize(opts=None):
    """
    Builds the email client and configures Lectic. Called from the plugin's
    Vimscript entry point with the contents of g:himalaya_config.
    """
    global _UI, _BUS
    try:
        config = Config(opts or {})
        log.set_logging(config['log_file'], debug=config['debug'])
        log.log_info(f"initialize(accounts={config.account_names()})")

        lectic_cfg = config['lectic']
        util.configure_client(lectic_cfg['api_key'], lectic_cfg['model'], lectic_cfg['temperature'])

        bus = EventBus()
        state = SessionState(config['state_file'], notify=util.notify)
        state.load()
        state.sync_with_sidebar(config['sidebar']['width'], config['sidebar']['position'])

        client = HimalayaClient(config, bus=bus, notify=util.notify)
        ui = EmailUI(
            config=config,
            state=state,
            stack=WindowStack(VimHost()),
            client=client,
            syncer=Syncer(config, client, bus),
            bus=bus,
        )

        bus.subscribe(SurfaceClosed, ui.on_surface_closed)
        bus.subscribe(SyncProgress, ui.on_sync_progress)
        bus.subscribe(SyncCompleted, ui.on_sync_completed)
        bus.subscribe(CommandCompleted, run_command_callback)

        _UI, _BUS = ui, bus

        if not client.check_himalaya():
            util.display_message("himalaya executable not found in PATH", history=True)
    except Exception as e:
        util.display_message(f"Initialization failed: {e}", error=True)

def get_ui():
    if _UI is None:
        initialize(vim.eval("get(g:, 'himalaya_config', {})"))
    return _UI

def process_events():
    """Drains queued events; called repeatedly from a timer."""
    if _BUS is None:
        return
    try:
        _BUS.process_pending()
    except Exception as e:
        error_message = str(e).replace("'", "''")
        vim.command(f"echom '[Himalaya] Event processing error: {error_message}'")

def on_win_closed(handle):
    """WinClosed autocommand: the window may have been closed behind our back."""
    if _BUS is not None:
        _BUS.post(SurfaceClosed(int(handle)))

def on_exit():
    if _UI is not None:
        _UI.state.save()

def command(name, *args):
    """
    Runs one of the email UI commands by name, reporting any error instead
    of raising into Vim.
    """
    log.log_info(f"command({name}, {args})")
    try:
        ui = get_ui()
        if ui is None:
            return
        handler = getattr(ui, name, None)
        if handler is None or name.startswith('_') or name.startswith('on_'):
            util.display_message(f"Unknown command: {name}", error=True)
            return
        return handler(*args)
    except Exception as e:
        util.display_message(f"Error: {e}", error=True)

def lectic_submit():
    get_ui()
    lectic.submit()

def lectic_submit_selection(message=None):
    get_ui()
    lectic.submit_selection(message)

def lectic_new_file(path=None):
    get_ui()
    lectic.new_file(path)

def lectic_on_filetype():
    lectic.on_filetype()
