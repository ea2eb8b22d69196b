"""
Actions that take messages out of the current folder: archive, spam and
delete (with a way out when the account has no trash), the same actions
applied to a multi-message selection, and saving drafts.

The editor side is reached through a ui object with:
    notify(message, error=False)
    select(items, prompt, on_choice)   on_choice(item or None)
    prompt_input(prompt)               -> str or None
    message_removed(email_id)          the message left the current folder
    refresh_email_list()
"""
import re
from neotex import log
from neotex.himalaya import HimalayaError

# Folder names looked up, ignoring case, when a message is archived, marked
# as spam or saved as a draft.
ARCHIVE_FOLDERS = ('All_Mail', 'Archive', 'All Mail', 'ARCHIVE', 'Archived')
SPAM_FOLDERS = ('Spam', 'Junk', 'SPAM', 'JUNK')
DRAFT_FOLDERS = ('Drafts', 'Draft')

# Offered when none of the folders above exists.
ARCHIVE_FALLBACKS = ('All_Mail', '[Gmail].All Mail')
SPAM_FALLBACKS = ('Junk', 'Spam')

YES = 'Yes'
NO = 'No'
CANCEL = 'Cancel'
MOVE_TO = 'Move to '
CUSTOM_FOLDER = 'Move to custom folder...'
PERMANENT_DELETE = 'Permanently delete (cannot be undone)'

# Batches larger than this announce themselves before starting.
BATCH_NOTICE_SIZE = 5

def find_folder(folders, names):
    """
    Returns the first of folders whose name, or the last component of a
    dotted or slashed name such as "[Gmail]/Spam", matches one of names
    ignoring case. None if nothing matches.
    """
    wanted = {n.lower() for n in names}
    for folder in folders:
        leaf = re.split(r'[/.]', folder)[-1]
        if folder.lower() in wanted or leaf.lower() in wanted:
            return folder
    return None

def move_choices(folders):
    return [MOVE_TO + f for f in folders]

def choice_folder(choice):
    """The folder named by a "Move to <folder>" choice, or None."""
    if not choice or choice == CUSTOM_FOLDER or not choice.startswith(MOVE_TO):
        return None
    return choice[len(MOVE_TO):] or None

def run_batch(ids, operation):
    """
    Applies operation(email_id) to every id, carrying on past failures.

    Returns:
        tuple: (ids that succeeded, [(id, error message), ...]).
    """
    done, failed = [], []
    for email_id in ids:
        try:
            operation(email_id)
            done.append(email_id)
        except HimalayaError as e:
            log.log_error(f"Batch operation failed for {email_id}: {e}")
            failed.append((email_id, str(e)))
    return done, failed

class Selection:
    """Ids of the messages marked in the list, in the order they were marked."""

    def __init__(self):
        self._ids = []

    def toggle(self, email_id):
        """Marks or unmarks email_id. Returns True if it is now marked."""
        if email_id in self._ids:
            self._ids.remove(email_id)
            return False
        self._ids.append(email_id)
        return True

    def clear(self):
        self._ids = []

    def ids(self):
        return list(self._ids)

    def __contains__(self, email_id):
        return email_id in self._ids

    def __len__(self):
        return len(self._ids)

class Mailbox:
    """
    Runs the message actions for the account and folder recorded in the
    session state. Prompts go through the ui; when is_headless() is true
    they are skipped and the non-interactive choice is taken.
    """

    def __init__(self, client, state, ui, is_headless=None):
        self.client = client
        self.state = state
        self.ui = ui
        self.is_headless = is_headless or (lambda: False)
        self.selection = Selection()

    @property
    def account(self):
        return self.state.get_current_account() or None

    @property
    def folder(self):
        return self.state.get_current_folder() or None

    def folders(self):
        try:
            return self.client.list_folders(self.account)
        except HimalayaError as e:
            self.ui.notify(f"Could not list folders: {e}", error=True)
            return None

    def _confirm(self, prompt, on_yes):
        if self.is_headless():
            on_yes()
            return

        def on_choice(choice):
            if choice == YES:
                on_yes()

        self.ui.select([YES, NO], prompt, on_choice)

    def move_to(self, email_id, folder, done_message=None):
        try:
            self.client.move(email_id, folder, account=self.account, source_folder=self.folder)
        except HimalayaError as e:
            self.ui.notify(f"Failed to move email: {e}", error=True)
            return False
        self.ui.notify(done_message or f"Email moved to {folder}")
        self.ui.message_removed(email_id)
        return True

    # --- single message ---

    def delete(self, email_id):
        def go():
            try:
                deleted, suggestions = self.client.smart_delete(email_id, account=self.account,
                                                                folder=self.folder)
            except HimalayaError as e:
                self.ui.notify(f"Failed to delete email: {e}", error=True)
                return
            if deleted:
                self.ui.notify("Email deleted")
                self.ui.message_removed(email_id)
            else:
                self.handle_missing_trash_folder(email_id, suggestions)

        self._confirm(f"Delete email {email_id}?", go)

    def handle_missing_trash_folder(self, email_id, suggestions=()):
        """
        The account has no trash to move email_id into: offer a permanent
        delete, a move to one of the suggested folders or to a folder typed
        in by the user. Headless sessions delete permanently.
        """
        if self.is_headless():
            self.ui.notify('Permanently deleting email (trash folder not found)')
            self.permanent_delete_email(email_id)
            return

        def on_choice(choice):
            if choice == PERMANENT_DELETE:
                self.permanent_delete_email(email_id)
            elif choice == CUSTOM_FOLDER:
                self.prompt_custom_folder_move(email_id)
            elif choice_folder(choice):
                self.move_to(email_id, choice_folder(choice))

        options = [PERMANENT_DELETE] + move_choices(suggestions) + [CUSTOM_FOLDER, CANCEL]
        self.ui.select(options, 'Trash Folder Not Found - How would you like to delete this email?', on_choice)

    def permanent_delete_email(self, email_id):
        try:
            self.client.purge(email_id, account=self.account, folder=self.folder)
        except HimalayaError as e:
            self.ui.notify(f"Failed to permanently delete email: {e}", error=True)
            return False
        self.ui.notify('Email permanently deleted')
        self.ui.message_removed(email_id)
        return True

    def prompt_custom_folder_move(self, email_id, done_message=None):
        if self.is_headless():
            folder = 'Archive'
            self.ui.notify('Moving email to Archive folder')
        else:
            folder = self.ui.prompt_input('Enter folder name: ')
        if not folder:
            return False
        return self.move_to(email_id, folder, done_message)

    def archive(self, email_id):
        def go():
            self._move_to_special(email_id, ARCHIVE_FOLDERS, ARCHIVE_FALLBACKS, 'archive',
                                  'Email archived')

        self._confirm('Archive current email?', go)

    def mark_spam(self, email_id):
        def go():
            self._move_to_special(email_id, SPAM_FOLDERS, SPAM_FALLBACKS, 'spam',
                                  'Email marked as spam', allow_delete=True)

        self._confirm('Mark current email as spam?', go)

    def _move_to_special(self, email_id, names, fallbacks, what, done_message, allow_delete=False):
        folders = self.folders()
        if folders is None:
            return
        target = find_folder(folders, names)
        if target:
            self.move_to(email_id, target, done_message)
            return

        if self.is_headless():
            self.ui.notify(f"No {what} folder found", error=True)
            return

        def on_choice(choice):
            if choice == PERMANENT_DELETE:
                self.permanent_delete_email(email_id)
            elif choice == CUSTOM_FOLDER:
                self.prompt_custom_folder_move(email_id, done_message)
            elif choice_folder(choice):
                self.move_to(email_id, choice_folder(choice), done_message)

        options = move_choices(fallbacks)
        if allow_delete:
            options.append(PERMANENT_DELETE)
        options += [CUSTOM_FOLDER, CANCEL]
        self.ui.select(options, f"No {what} folder found. What would you like to do?", on_choice)

    # --- selection ---

    def toggle_selection(self, email_id):
        return self.selection.toggle(email_id)

    def _selected(self):
        ids = self.selection.ids()
        if not ids:
            self.ui.notify('No emails selected')
        return ids

    def _run_selected(self, ids, operation, summary, progress=None):
        if progress and len(ids) > BATCH_NOTICE_SIZE:
            self.ui.notify(progress)
        done, failed = run_batch(ids, operation)
        if self.state.get_selected_email() in done:
            self.state.set_selected_email(None)
        self.selection.clear()
        self.ui.notify(summary(len(done), len(failed)), error=bool(failed) and not done)
        self.ui.refresh_email_list()
        return done, failed

    def delete_selected_emails(self):
        ids = self._selected()
        if not ids:
            return

        def go():
            self._run_selected(
                ids,
                lambda i: self.client.delete(i, account=self.account, folder=self.folder),
                lambda done, errors: f"Deleted {done} emails ({errors} errors)",
                progress=f"Deleting {len(ids)} emails...",
            )

        self._confirm(f"Delete {len(ids)} selected emails?", go)

    def archive_selected_emails(self):
        self._move_selected_to_special(ARCHIVE_FOLDERS, 'archive', 'Archive',
                                       lambda done, errors: f"Archived {done} emails ({errors} errors)")

    def spam_selected_emails(self):
        self._move_selected_to_special(SPAM_FOLDERS, 'spam', 'Mark as spam',
                                       lambda done, errors: f"Marked {done} emails as spam ({errors} errors)")

    def _move_selected_to_special(self, names, what, verb, summary):
        ids = self._selected()
        if not ids:
            return
        folders = self.folders()
        if folders is None:
            return
        target = find_folder(folders, names)
        if not target:
            self.ui.notify(f"No {what} folder found", error=True)
            return

        def go():
            self._run_selected(ids, lambda i: self._move(i, target), summary)

        self._confirm(f"{verb} {len(ids)} selected emails?", go)

    def move_selected_emails(self, folder=None):
        ids = self._selected()
        if not ids:
            return

        def go(target):
            if target:
                self._run_selected(ids, lambda i: self._move(i, target),
                                   lambda done, errors: f"Moved {done} emails to {target} ({errors} errors)")

        if folder:
            go(folder)
            return
        if self.is_headless():
            self.ui.notify('No destination folder given', error=True)
            return
        folders = self.folders()
        if folders is None:
            return
        self.ui.select([f for f in folders if f != self.folder], f"Move {len(ids)} emails to folder:", go)

    def _move(self, email_id, folder):
        self.client.move(email_id, folder, account=self.account, source_folder=self.folder)

    # --- drafts ---

    def drafts_folder(self):
        try:
            folders = self.client.list_folders(self.account)
        except HimalayaError as e:
            log.log_info(f"Using the default drafts folder: {e}")
            return DRAFT_FOLDERS[0]
        return find_folder(folders, DRAFT_FOLDERS) or DRAFT_FOLDERS[0]

    def save_draft(self, template):
        folder = self.drafts_folder()
        try:
            self.client.save_draft(template, account=self.account, folder=folder)
        except HimalayaError as e:
            self.ui.notify(f"Failed to save draft: {e}", error=True)
            return False
        self.ui.notify(f"Draft saved to {folder}")
        return True
