"""
Restoring the previous email session on request.

The editor side is reached through a ui object with:
    notify(message, error=False)
    show_email_list(account, folder)   -> handle of the list surface
    read_email(email_id, parent)       -> handle of the reading surface
    select(items, prompt, on_choice)   on_choice(item or None)
"""
from neotex import log

OPEN_PREVIOUS = 'Open previous email'
JUST_LIST = 'Just show email list'
RESTORE = 'Restore previous session'
START_FRESH = 'Start fresh'

def restore_session(state, ui, headless=False):
    """
    Re-opens the saved account/folder and, if a message was selected, offers
    to open it again on top of the list. In headless mode the message is
    opened without asking. Returns True if the list was restored.
    """
    can_restore, reason = state.can_restore()
    if not can_restore:
        ui.notify(f"Cannot restore session: {reason}")
        return False

    account = state.get_current_account()
    folder = state.get_current_folder()
    selected_email = state.get_selected_email()

    log.log_info(f"Restoring session {account}/{folder} selected={selected_email}")
    list_surface = ui.show_email_list(account, folder)
    if list_surface is None:
        ui.notify(f"Cannot restore session: could not open {account}/{folder}", error=True)
        return False

    if selected_email is not None:
        if headless:
            ui.read_email(selected_email, parent=list_surface)
        else:
            def on_choice(choice):
                # Dismissing the prompt leaves just the list open.
                if choice == OPEN_PREVIOUS:
                    ui.read_email(selected_email, parent=list_surface)

            ui.select([OPEN_PREVIOUS, JUST_LIST], 'Restore previous email session:', on_choice)

    if state.get_last_query() and state.get_search_results():
        ui.notify('Previous search available')

    ui.notify('Email session restored')
    return True

def prompt_session_restore(state, ui, headless=False):
    can_restore, reason = state.can_restore()
    if not can_restore:
        ui.notify(reason)
        return False

    if headless:
        ui.notify(reason)
        return restore_session(state, ui, headless=True)

    def on_choice(choice):
        if choice == RESTORE:
            restore_session(state, ui, headless=False)

    ui.select([RESTORE, START_FRESH], f"{reason} - Restore?", on_choice)
    return True
