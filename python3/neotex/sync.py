import re, shlex, subprocess, threading
from neotex import log
from neotex.events import SyncProgress, SyncCompleted

# mbsync channels of the stock Gmail setup, by himalaya folder name.
GMAIL_CHANNELS = {
    'INBOX': 'gmail-inbox',
    'Drafts': 'gmail-drafts',
    'Sent': 'gmail-sent',
    'Trash': 'gmail-trash',
    'Spam': 'gmail-spam',
    'All_Mail': 'gmail-all',
    'Starred': 'gmail-starred',
    'Important': 'gmail-important',
}

_PROGRESS_RE = re.compile(
    r'C:\s*(\d+)/(\d+)\s+B:\s*(\d+)/(\d+)'
    r'(?:.*?F:\s*\+(\d+)/(\d+))?'
    r'(?:.*?N:\s*\+(\d+)/(\d+))?'
)

_AUTH_FAILURE_RE = re.compile(r'authenticationfailed|authentication failed|invalid credentials|\b401\b', re.I)

def is_drafts_folder(folder):
    return folder == 'Drafts' or 'draft' in folder.lower()

def resolve_sync_target(account_name, account_cfg, folder):
    """
    Picks the mbsync channel to run for a folder.

    Returns:
        tuple: (target, display_name)
    """
    folder_channels = {}
    if account_cfg:
        folder_channels = (account_cfg.get('mbsync') or {}).get('folder_channels') or {}

    if folder in folder_channels:
        return folder_channels[folder], folder

    is_gmail = account_name.lower() == 'gmail'

    if is_drafts_folder(folder):
        return ('gmail-drafts' if is_gmail else f"{account_name}:Drafts"), 'drafts'

    if is_gmail:
        target = GMAIL_CHANNELS.get(folder)
        if target is None:
            # No dedicated channel, sync everything.
            return 'gmail', 'all folders'
        return target, folder

    return f"{account_name}:{folder}", folder

def inbox_target(account_cfg):
    mbsync_cfg = (account_cfg or {}).get('mbsync') or {}
    return mbsync_cfg.get('inbox_channel') or 'gmail-inbox'

def parse_progress(line):
    """
    Parses an mbsync progress line such as
    "C: 1/2  B: 3/4  F: +0/0 *0/0 #0/0 -0/0  N: +5/10 *0/0 #0/0 -0/0".
    Returns None for any other line.
    """
    match = _PROGRESS_RE.search(line)
    if not match:
        return None
    values = [int(v) if v is not None else 0 for v in match.groups()]
    return {
        'channels_done': values[0],
        'channels_total': values[1],
        'boxes_done': values[2],
        'boxes_total': values[3],
        'far_added': values[4],
        'far_total': values[5],
        'near_added': values[6],
        'near_total': values[7],
    }

class Syncer:
    """
    Runs mbsync on a worker thread. Progress and completion are posted to the
    event bus as SyncProgress and SyncCompleted; nothing here blocks the
    editor.
    """

    def __init__(self, config, client, bus, popen=subprocess.Popen):
        self.config = config
        self.client = client
        self.bus = bus
        self.popen = popen
        self._lock = threading.Lock()
        self._running = set()

    def is_running(self, target=None):
        with self._lock:
            if target is None:
                return bool(self._running)
            return target in self._running

    def sync(self, target, account=None):
        """
        Starts a sync of an mbsync channel. Returns the worker thread, or
        None if that channel is already syncing.
        """
        with self._lock:
            if target in self._running:
                log.log_info(f"Sync for {target} already running")
                return None
            self._running.add(target)

        thread = threading.Thread(target=self._worker, args=(target, account), daemon=True)
        thread.start()
        return thread

    def _worker(self, target, account):
        try:
            returncode, output = self._run_once(target)

            if returncode != 0 and _AUTH_FAILURE_RE.search('\n'.join(output)) and account \
                    and self.config.should_refresh_oauth(account):
                log.log_info(f"mbsync authentication failed for {target}, refreshing credentials")
                if self.client.refresh_credentials(account):
                    returncode, output = self._run_once(target)

            if returncode == 0:
                self.bus.post(SyncCompleted(target, ok=True))
            else:
                error = next((line for line in reversed(output) if line.strip()), '')
                error = error.strip() or f"mbsync exited with code {returncode}"
                log.log_error(f"Sync failed for {target}: {error}")
                self.bus.post(SyncCompleted(target, ok=False, error=error))
        except OSError as e:
            log.log_error(f"Could not run mbsync for {target}: {e}")
            self.bus.post(SyncCompleted(target, ok=False, error=str(e)))
        except Exception as e:
            log.log_error(f"Sync worker for {target} failed: {e!r}")
            self.bus.post(SyncCompleted(target, ok=False, error=f"Sync failed: {e}"))
        finally:
            with self._lock:
                self._running.discard(target)

    def _run_once(self, target):
        cmd = shlex.split(self.config['mbsync_binary']) + [target]
        log.log_info(f"Running {' '.join(cmd)}")
        proc = self.popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, text=True, errors='replace')

        output = []
        try:
            for raw in proc.stdout:
                # mbsync redraws its progress line with carriage returns.
                for line in raw.replace('\r', '\n').split('\n'):
                    if not line.strip():
                        continue
                    output.append(line)
                    progress = parse_progress(line)
                    if progress is not None:
                        self.bus.post(SyncProgress(target, progress))
        except Exception:
            proc.kill()
            proc.wait()
            raise

        return proc.wait(), output
