import os, json, time, tempfile
from dataclasses import dataclass, fields, asdict
from neotex import log

# A saved session older than this is never offered for restore.
FRESHNESS_SECONDS = 24 * 60 * 60

@dataclass
class SessionRecord:
    current_account: str = ''
    current_folder: str = ''
    selected_email: object = None
    sidebar_width: int = 40
    sidebar_position: str = 'left'
    last_query: object = None
    search_results: object = None
    last_saved: object = None

_FIELD_NAMES = tuple(f.name for f in fields(SessionRecord))

def _valid_id(value):
    return isinstance(value, (str, int)) and not isinstance(value, bool)

# Per-field validators used when merging a loaded document over the defaults.
_VALIDATORS = {
    'current_account': lambda v: isinstance(v, str),
    'current_folder': lambda v: isinstance(v, str),
    'selected_email': lambda v: v is None or _valid_id(v),
    'sidebar_width': lambda v: isinstance(v, int) and not isinstance(v, bool) and v > 0,
    'sidebar_position': lambda v: v in ('left', 'right'),
    'last_query': lambda v: v is None or isinstance(v, str),
    'search_results': lambda v: v is None or (isinstance(v, list) and all(_valid_id(i) for i in v)),
    'last_saved': lambda v: v is None or (isinstance(v, (int, float)) and not isinstance(v, bool)),
}

def default_state_file():
    data_home = os.environ.get('XDG_DATA_HOME', '').strip()
    if not data_home:
        data_home = os.path.join(os.path.expanduser('~'), '.local', 'share')
    return os.path.join(data_home, 'nvim', 'himalaya', 'state.json')

class SessionState:
    """
    The "where was I" record of the email UI: account, folder, selected
    message, sidebar geometry and last search. Setters only touch memory;
    callers decide when to save().
    """

    def __init__(self, path=None, clock=time.time, notify=None):
        self.path = os.path.expanduser(path) if path else default_state_file()
        self.clock = clock
        self.notify = notify
        self.record = SessionRecord()

    def get(self, name):
        if name not in _FIELD_NAMES:
            raise KeyError(name)
        return getattr(self.record, name)

    def set(self, name, value):
        """
        Sets one field in memory. Raises KeyError for unknown fields (and for
        last_saved, which only save() stamps) and ValueError for a value
        that load() would not accept back.
        """
        if name not in _FIELD_NAMES or name == 'last_saved':
            raise KeyError(name)
        if not _VALIDATORS[name](value):
            raise ValueError(f"Invalid value for {name}: {value!r}")
        setattr(self.record, name, value)

    def get_current_account(self):
        return self.record.current_account

    def set_current_account(self, account):
        self.set('current_account', account or '')

    def get_current_folder(self):
        return self.record.current_folder

    def set_current_folder(self, folder):
        self.set('current_folder', folder or '')

    def get_selected_email(self):
        return self.record.selected_email

    def set_selected_email(self, email_id):
        self.set('selected_email', email_id)

    def get_last_query(self):
        return self.record.last_query

    def get_search_results(self):
        return self.record.search_results

    def set_search(self, query, results):
        results = list(results) if results is not None else None
        if not _VALIDATORS['search_results'](results):
            raise ValueError(f"Invalid search results: {results!r}")
        self.set('last_query', query)
        self.record.search_results = results

    def get_sidebar(self):
        return self.record.sidebar_width, self.record.sidebar_position

    def set_sidebar(self, width=None, position=None):
        if width is not None:
            self.set('sidebar_width', int(width))
        if position is not None:
            self.set('sidebar_position', position)

    def sync_with_sidebar(self, width, position):
        """Adopts configured sidebar geometry unless a session already has its own."""
        if self.record.last_saved is None:
            try:
                self.set_sidebar(width, position)
            except (TypeError, ValueError) as e:
                log.log_error(f"Ignoring sidebar config: {e}")

    def reset(self):
        self.record = SessionRecord()

    def to_dict(self):
        return asdict(self.record)

    def save(self):
        """
        Writes the record to disk and stamps it. Returns False (after logging
        and notifying) if the file cannot be written; the in-memory record is
        kept either way.
        """
        previous = self.record.last_saved or 0
        self.record.last_saved = max(self.clock(), previous)

        directory = os.path.dirname(self.path)
        tmp_path = None
        try:
            if directory:
                os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix='.state-', suffix='.json', dir=directory or None)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except (OSError, TypeError, ValueError) as e:
            log.log_error(f"Failed to save session state to {self.path}: {e}")
            if self.notify:
                self.notify(f"Could not save email session: {e}", error=True)
            return False
        finally:
            if tmp_path and os.path.exists(tmp_path):
                try:
                    os.unlink(tmp_path)
                except OSError as e:
                    log.log_debug(f"Could not remove {tmp_path}: {e}")

        log.log_debug(f"Session state saved to {self.path}")
        return True

    def load(self):
        """
        Reads the record from disk, merging recognized fields over the
        defaults. Returns True if a saved record was found. A missing or
        malformed file leaves the defaults in place.
        """
        self.record = SessionRecord()
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return False
        except (OSError, ValueError) as e:
            log.log_info(f"Ignoring unreadable session state {self.path}: {e}")
            return False

        if not isinstance(data, dict):
            log.log_info(f"Ignoring session state {self.path}: not a JSON object")
            return False

        for name in _FIELD_NAMES:
            if name in data and _VALIDATORS[name](data[name]):
                setattr(self.record, name, data[name])

        return self.record.last_saved is not None

    def has_record(self):
        return self.record.last_saved is not None

    def is_fresh(self):
        if not self.has_record():
            return False
        return self.clock() - self.record.last_saved < FRESHNESS_SECONDS

    def can_restore(self):
        """
        Returns:
            tuple: (bool, str) whether a restore can be offered, and why.
        """
        if not self.has_record():
            return False, "No previous email session found"
        if not self.is_fresh():
            return False, "No recent session found (older than 24 hours)"

        account = self.record.current_account
        folder = self.record.current_folder
        if not account or not folder:
            return False, "Previous session is incomplete (no account or folder)"

        return True, f"Session available: {account}/{folder}"
