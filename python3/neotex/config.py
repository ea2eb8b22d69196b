import os, copy, tomllib
from neotex import log

DEFAULTS = {
    'binary': 'himalaya',
    'mbsync_binary': 'mbsync',
    'default_account': None,
    'accounts': {},
    'state_file': None,
    'log_file': None,
    'debug': False,
    'page_size': 30,
    'sidebar': {
        'width': 40,
        'position': 'left',
    },
    'sync': {
        'auto_refresh_oauth': True,
        'timeout': 300,
    },
    'lectic': {
        'api_key': None,
        'model': 'gemini-2.5-flash',
        'temperature': None,
    },
}

# Defaults applied to each entry of 'accounts'.
ACCOUNT_DEFAULTS = {
    'email': '',
    'oauth': False,
    'oauth_refresh_cmd': None,
    'mbsync': {
        'inbox_channel': None,
        'folder_channels': {},
    },
}

def merge(base, overrides):
    """
    Recursively merges overrides into a copy of base. Nested dicts are merged
    key by key, everything else is replaced.
    """
    result = copy.deepcopy(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result

def candidate_himalaya_config_paths():
    paths = []
    env_paths = os.environ.get('HIMALAYA_CONFIG', '').strip()
    if env_paths:
        for raw in env_paths.split(':'):
            path = raw.strip()
            if path:
                paths.append(os.path.abspath(os.path.expanduser(path)))

    xdg = os.environ.get('XDG_CONFIG_HOME', '').strip()
    if xdg:
        paths.append(os.path.join(os.path.abspath(os.path.expanduser(xdg)), 'himalaya', 'config.toml'))
    else:
        paths.append(os.path.join(os.path.expanduser('~'), '.config', 'himalaya', 'config.toml'))

    paths.append(os.path.join(os.path.expanduser('~'), '.himalaya', 'config.toml'))
    paths.append(os.path.join(os.path.expanduser('~'), '.himalayarc'))

    unique = []
    seen = set()
    for path in paths:
        if path not in seen:
            seen.add(path)
            unique.append(path)
    return unique

def discover_accounts(paths=None):
    """
    Reads account names from himalaya's own config.toml.

    Returns:
        tuple: (accounts, default_account) where accounts maps each account
        name to {'email': ...} and default_account may be None.
    """
    accounts = {}
    default_account = None

    for path in paths if paths is not None else candidate_himalaya_config_paths():
        if not os.path.isfile(path):
            continue

        try:
            with open(path, 'rb') as fp:
                data = tomllib.load(fp)
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.log_info(f"Cannot parse himalaya config {path}: {e}")
            continue

        raw_accounts = data.get('accounts')
        if not isinstance(raw_accounts, dict):
            continue

        for name, account_cfg in raw_accounts.items():
            name = str(name).strip()
            if not name or name in accounts:
                continue
            email = ''
            if isinstance(account_cfg, dict):
                email = str(account_cfg.get('email', '')).strip()
                if default_account is None and account_cfg.get('default') is True:
                    default_account = name
            accounts[name] = {'email': email}

    if default_account is None and len(accounts) == 1:
        default_account = next(iter(accounts))
    return accounts, default_account

class Config:
    """Merged plugin options plus account lookups."""

    def __init__(self, opts=None, discover=True):
        self.options = merge(DEFAULTS, opts)

        if discover:
            found, found_default = discover_accounts()
            for name, account_cfg in found.items():
                if name not in self.options['accounts']:
                    self.options['accounts'][name] = account_cfg
            if not self.options['default_account']:
                self.options['default_account'] = found_default

        self.options['accounts'] = {
            name: merge(ACCOUNT_DEFAULTS, account_cfg)
            for name, account_cfg in self.options['accounts'].items()
        }

    def __getitem__(self, key):
        return self.options[key]

    def get(self, key, default=None):
        return self.options.get(key, default)

    def get_account(self, name):
        if not name:
            return None
        return self.options['accounts'].get(name)

    def account_names(self):
        return sorted(self.options['accounts'])

    def get_default_account_name(self):
        name = self.options['default_account']
        if name:
            return name
        names = self.account_names()
        return names[0] if names else None

    def should_refresh_oauth(self, account_name):
        account = self.get_account(account_name)
        return bool(account and account['oauth'] and self.options['sync']['auto_refresh_oauth'])
