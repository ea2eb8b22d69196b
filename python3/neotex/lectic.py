import vim
import os, json
from neotex import util, log
from neotex.conversation import (
    LECTIC_FILETYPE, TEMPLATE, TEMPLATE_CURSOR_LINE, default_filename, ensure_extension,
    format_submission, append_lines, parse_front_matter, split_turns, build_contents, format_response,
)

def _message(message, error=False):
    util.display_message(message, error=error, history=error, prefix='Lectic')

def _in_lectic_buffer():
    if vim.eval('&filetype') != LECTIC_FILETYPE:
        util.display_message("This command only works in Lectic files (.lec)", history=True, prefix='Lectic')
        return False
    return True

def submit():
    """
    Sends the conversation in the current buffer to the model and appends
    the reply as an interlocutor block.
    """
    log.log_info("lectic.submit()")
    try:
        if not _in_lectic_buffer():
            return

        client = util.get_client()
        if not client:
            return

        buffer = vim.current.buffer
        lines = buffer[:]
        settings, body_start = parse_front_matter(lines)
        turns = split_turns(lines, body_start)
        if not turns or turns[-1][0] != 'user':
            _message("Nothing to submit. Write a message below the last reply first.")
            return

        _message("Processing with Lectic AI...")
        kwargs = util.create_generation_kwargs(
            contents=build_contents(turns),
            system_instruction=settings.get('prompt'),
            temperature=settings.get('temperature'),
            model=settings.get('model'),
        )
        response = client.models.generate_content(**kwargs)

        reply = format_response(settings.get('name'), response.text or '')
        buffer.append(append_lines(buffer[:], '\n'.join(reply)) + [''])
        vim.current.window.cursor = (len(buffer), 0)
        _message("")

    except Exception as e:
        _message(f"Error submitting to Lectic: {e}", error=True)

def submit_selection(message=None):
    """
    Appends the last visual selection together with a question typed by the
    user to the end of the conversation, then submits it.
    """
    log.log_info(f"lectic.submit_selection({message})")
    try:
        if not _in_lectic_buffer():
            return

        if util.is_buffer_modified():
            _message("Saving file before submitting to Lectic...")
            vim.command('write')

        start_line, start_col = [int(v) for v in vim.eval("getpos(\"'<\")")[1:3]]
        end_line, end_col = [int(v) for v in vim.eval("getpos(\"'>\")")[1:3]]
        selected = ''
        if start_line > 0 and end_line > 0:
            lines = vim.current.buffer[start_line - 1:end_line]
            if len(lines) == 1:
                selected = lines[0][start_col - 1:end_col]
            elif lines:
                lines[0] = lines[0][start_col - 1:]
                lines[-1] = lines[-1][:end_col]
                selected = '\n'.join(lines)

        if not selected:
            _message("No text selected. Please select text in visual mode first.", error=True)
            return

        if not message:
            message = util.prompt_input('Add a message or question: ')
        if not message:
            _message("Operation cancelled - no message provided")
            return

        buffer = vim.current.buffer
        buffer.append(append_lines(buffer[:], format_submission(selected, message)))
        submit()

    except Exception as e:
        _message(f"Error submitting selection: {e}", error=True)

def new_file(path=None):
    """
    Opens a new Lectic conversation from the welcome template and saves it,
    asking for a file name when none is given.
    """
    log.log_info(f"lectic.new_file({path})")
    try:
        vim.command('enew')
        vim.command(f"setlocal filetype={LECTIC_FILETYPE}")
        vim.current.buffer[:] = TEMPLATE.split('\n')

        if not path:
            default = os.path.join(vim.eval('getcwd()'), default_filename())
            path = util.prompt_input('Save Lectic file as (full path): ', default, 'file')
        if not path:
            return

        path = ensure_extension(os.path.expanduser(path))
        vim.command(f"write {vim.eval(f'fnameescape({json.dumps(path)})')}")
        vim.current.window.cursor = (min(TEMPLATE_CURSOR_LINE, len(vim.current.buffer)), 0)
        _message(f"Lectic file created: {path}")

    except Exception as e:
        _message(f"Failed to save file: {e}", error=True)

def on_filetype():
    """Buffer-local settings for lectic.markdown buffers."""
    vim.command('setlocal conceallevel=2 concealcursor=nc')
    model = (util.current_model() or '').replace(' ', '\\ ')
    vim.command(f"setlocal statusline=%<%f\\ %h%m%r%=Model:\\ {model}\\ \\|\\ lectic.markdown\\ %l,%c%V\\ %P")
