import re, json, shlex, shutil, subprocess, threading
from dataclasses import dataclass, field
from neotex import log
from neotex.events import CommandCompleted

# Commands that answer with plain text instead of JSON on success.
TEXT_COMMANDS = ('send', 'save', 'move', 'delete', 'copy', 'flag', 'expunge')

# Folder name fragments that suggest a trash folder.
TRASH_HINTS = ('trash', 'deleted', 'bin')

class HimalayaError(RuntimeError):
    pass

class TransportError(HimalayaError):
    pass

class AuthenticationError(HimalayaError):
    pass

class NotFoundError(HimalayaError):
    pass

class ResponseError(HimalayaError):
    pass

@dataclass
class MessageMeta:
    id: str
    subject: str = ''
    sender: str = ''
    date: str = ''
    flags: list = field(default_factory=list)
    has_attachment: bool = False

    @property
    def seen(self):
        return 'Seen' in self.flags

@dataclass
class MessageBody:
    id: str
    folder: str
    content: str

def _format_address(value):
    if isinstance(value, dict):
        name = (value.get('name') or '').strip()
        addr = (value.get('addr') or value.get('address') or '').strip()
        if name and addr:
            return f"{name} <{addr}>"
        return name or addr
    if isinstance(value, list):
        return ', '.join(filter(None, (_format_address(v) for v in value)))
    return str(value or '').strip()

def parse_envelope(raw):
    """Turns one envelope from `envelope list -o json` into a MessageMeta."""
    flags = raw.get('flags') or []
    return MessageMeta(
        id=str(raw.get('id', '')),
        subject=str(raw.get('subject') or ''),
        sender=_format_address(raw.get('from')),
        date=str(raw.get('date') or ''),
        flags=[str(f) for f in flags] if isinstance(flags, list) else [],
        has_attachment=bool(raw.get('has_attachment')),
    )

def classify_error(error_msg):
    """
    Maps the stderr of a failed himalaya run to an exception carrying a
    message fit for the user.
    """
    text = error_msg or ''
    lowered = text.lower()

    if '401' in text or 'unauthorized' in lowered or 'authentication' in lowered:
        return AuthenticationError(text)
    if re.search(r'folder.*not found', lowered):
        return NotFoundError('Folder not found. Check your folder configuration.')
    if 'no such file or directory' in lowered:
        return TransportError('Himalaya not found. Please install himalaya CLI.')
    if 'not found' in lowered or 'cannot find' in lowered:
        return NotFoundError(text)
    if 'network' in lowered or 'connection' in lowered:
        return TransportError('Network error. Check your internet connection.')
    if 'timeout' in lowered or 'timed out' in lowered:
        return TransportError('Request timed out. Try again later.')
    return TransportError(text or 'Command failed')

def parse_args(args_string):
    """
    Splits a command line typed by the user into arguments, honouring
    single and double quotes. An unterminated quote takes the rest of the
    line as one argument.
    """
    try:
        return shlex.split(args_string)
    except ValueError:
        parts = re.split(r'''(["'])''', args_string, maxsplit=1)
        if len(parts) < 3:
            return args_string.split()
        head, _, tail = parts
        return head.split() + ([tail] if tail else [])

class HimalayaClient:
    """
    Runs the himalaya CLI and decodes its JSON output.

    Args:
        config (neotex.config.Config): Plugin configuration.
        bus (neotex.events.EventBus): Where asynchronous results are posted.
        notify (callable, optional): notify(message, error=False) sink.
        runner (callable, optional): subprocess.run replacement for tests.
    """

    def __init__(self, config, bus=None, notify=None, runner=subprocess.run):
        self.config = config
        self.bus = bus
        self.notify = notify
        self.runner = runner

    @property
    def binary(self):
        return self.config['binary']

    def build_command(self, args, account, folder=None):
        cmd = [self.binary]
        cmd.extend(str(a) for a in args)
        cmd.extend(['-a', account, '-o', 'json'])
        if folder:
            cmd.extend(['-f', folder])
        return cmd

    def execute(self, args, account=None, folder=None, stdin=None):
        """
        Runs a himalaya command synchronously.

        Authentication failures on OAuth accounts are retried once after a
        credential refresh.

        Returns:
            The decoded JSON output, or the trimmed text output of commands
            that do not produce JSON.

        Raises:
            HimalayaError: on any failure.
        """
        account = account or self.config.get_default_account_name()
        if not account:
            log.log_error("No account configured")
            raise HimalayaError('No account configured')

        cmd = self.build_command(args, account, folder)
        log.log_debug(f"Executing himalaya command: {' '.join(cmd)}")

        try:
            return self._run(cmd, args, stdin)
        except AuthenticationError as e:
            log.log_error(f"Authentication failed for {account}: {e}")
            if not self.config.should_refresh_oauth(account):
                raise

            self._notify('Authentication failed, refreshing token...')
            if not self.refresh_credentials(account):
                raise AuthenticationError('OAuth refresh failed') from e

            try:
                result = self._run(cmd, args, stdin)
            except HimalayaError as retry_error:
                raise type(retry_error)(f"Command failed after OAuth refresh: {retry_error}") from retry_error
            log.log_info("Command succeeded after OAuth refresh")
            return result

    def execute_async(self, args, callback, account=None, folder=None):
        """
        Runs a himalaya command on a worker thread. The outcome is posted to
        the event bus as CommandCompleted and callback(result, error) is
        called from the main thread when the bus is processed.
        """
        if self.bus is None:
            raise RuntimeError('execute_async needs an event bus')

        def worker():
            try:
                result = self.execute(args, account=account, folder=folder)
                self.bus.post(CommandCompleted(list(args), result=result, callback=callback))
            except HimalayaError as e:
                self.bus.post(CommandCompleted(list(args), error=str(e), callback=callback))

        thread = threading.Thread(target=worker, daemon=True)
        thread.start()
        return thread

    def list(self, account, folder, page=1, page_size=None, query=None):
        page_size = page_size or self.config['page_size']
        args = ['envelope', 'list', '--page', str(page), '--page-size', str(page_size)]
        if query:
            args.extend(parse_args(query))
        result = self.execute(args, account=account, folder=folder)
        if not isinstance(result, list):
            raise ResponseError('Unexpected envelope list response')
        return [parse_envelope(raw) for raw in result if isinstance(raw, dict)]

    def fetch(self, account, folder, email_id):
        result = self.execute(['message', 'read', str(email_id)], account=account, folder=folder)
        if isinstance(result, dict):
            content = result.get('content') or result.get('body') or json.dumps(result, indent=2)
        else:
            content = str(result)
        return MessageBody(id=str(email_id), folder=folder, content=content)

    def template(self, kind, account, folder, email_id=None, reply_all=False):
        """
        Asks himalaya for a ready-to-edit message: kind is 'write', 'reply'
        or 'forward'. Returns the template text.
        """
        args = ['template', kind]
        if email_id is not None:
            args.append(str(email_id))
        if kind == 'reply' and reply_all:
            args.append('--all')
        result = self.execute(args, account=account, folder=folder)
        if isinstance(result, dict):
            return result.get('content') or ''
        return str(result or '')

    def send(self, template, account=None):
        return self.execute(['template', 'send'], account=account, stdin=template)

    def move(self, email_id, folder, account=None, source_folder=None):
        self.execute(['message', 'move', folder, str(email_id)], account=account, folder=source_folder)
        return True

    def delete(self, email_id, account=None, folder=None):
        self.execute(['message', 'delete', str(email_id)], account=account, folder=folder)
        return True

    def smart_delete(self, email_id, account=None, folder=None):
        """
        Moves a message to the trash. When the account has no trash folder
        the message is left alone and the folders that look like a trash
        are returned instead.

        Returns:
            tuple: (True, []) on success, (False, suggestions) if the trash
            folder is missing.
        """
        try:
            self.delete(email_id, account=account, folder=folder)
            return True, []
        except NotFoundError as e:
            text = str(e).lower()
            if 'folder' not in text and 'trash' not in text:
                raise
            log.log_info(f"Delete of {email_id} found no trash folder: {e}")
        try:
            folders = self.list_folders(account)
        except HimalayaError as e:
            log.log_error(f"Could not list folders for trash suggestions: {e}")
            folders = []
        return False, [f for f in folders if any(h in f.lower() for h in TRASH_HINTS)]

    def purge(self, email_id, account=None, folder=None):
        """Deletes a message for good: flags it deleted and expunges the folder."""
        self.execute(['flag', 'add', str(email_id), 'deleted'], account=account, folder=folder)
        self.execute(['folder', 'expunge', folder or 'INBOX'], account=account)
        return True

    def save_draft(self, template, account=None, folder='Drafts'):
        self.execute(['template', 'save'], account=account, folder=folder, stdin=template)
        return True

    def list_folders(self, account=None):
        result = self.execute(['folder', 'list'], account=account)
        if not isinstance(result, list):
            raise ResponseError('Unexpected folder list response')
        names = []
        for raw in result:
            name = raw.get('name') if isinstance(raw, dict) else raw
            if name:
                names.append(str(name))
        return names

    def refresh_credentials(self, account):
        """
        Runs the account's OAuth refresh command. Returns True on success.
        """
        account_cfg = self.config.get_account(account)
        refresh_cmd = account_cfg and account_cfg.get('oauth_refresh_cmd')
        if not refresh_cmd:
            log.log_info(f"No oauth_refresh_cmd configured for {account}")
            return False

        if isinstance(refresh_cmd, str):
            refresh_cmd = shlex.split(refresh_cmd)

        log.log_info(f"Refreshing OAuth credentials for {account}")
        try:
            proc = self.runner(refresh_cmd, capture_output=True, text=True, check=False,
                               timeout=self.config['sync']['timeout'])
        except (OSError, subprocess.TimeoutExpired) as e:
            log.log_error(f"OAuth refresh for {account} failed: {e}")
            return False

        if proc.returncode != 0:
            log.log_error(f"OAuth refresh for {account} failed: {(proc.stderr or proc.stdout).strip()}")
            return False
        return True

    def check_himalaya(self):
        return shutil.which(self.binary) is not None

    def get_version(self):
        try:
            proc = self.runner([self.binary, '--version'], capture_output=True, text=True, check=False)
        except OSError:
            return None
        if proc.returncode == 0:
            return proc.stdout.strip()
        return None

    def _run(self, cmd, args, stdin=None):
        try:
            proc = self.runner(cmd, input=stdin, capture_output=True, text=True, check=False,
                               timeout=self.config['sync']['timeout'])
        except FileNotFoundError:
            raise TransportError('Himalaya not found. Please install himalaya CLI.')
        except subprocess.TimeoutExpired:
            raise TransportError('Request timed out. Try again later.')

        output = proc.stdout or ''
        if proc.returncode != 0:
            error_msg = (proc.stderr or output).strip()
            log.log_error(f"Himalaya command failed (rc={proc.returncode}): {error_msg}")
            raise classify_error(error_msg)

        try:
            return json.loads(output)
        except ValueError:
            if any(a in TEXT_COMMANDS for a in args[:2]):
                return output.strip()
            log.log_error(f"Failed to parse himalaya output: {output[:200]}")
            raise ResponseError('Failed to parse response')

    def _notify(self, message, error=False):
        if self.notify:
            self.notify(message, error=error)
