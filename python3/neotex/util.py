import vim
import os, json, inspect
from google import genai
from google.genai import types
from neotex import log

# Lectic model settings, filled in by configure_client().
_API_KEY = None
_MODEL = None
_TEMPERATURE = None
_GENAI_CLIENT = None

def configure_client(api_key, model, temperature=None):
    """Stores the Gemini settings; the client itself is built on first use."""
    global _API_KEY, _MODEL, _TEMPERATURE, _GENAI_CLIENT
    _API_KEY = api_key or os.environ.get('GEMINI_API_KEY')
    _MODEL = model
    _TEMPERATURE = temperature
    _GENAI_CLIENT = None

def current_model():
    return _MODEL

def get_client():
    """
    Returns the shared genai.Client, creating it on the first call.
    Reports the problem and returns None when no API key is configured or
    the client cannot be built.
    """
    global _GENAI_CLIENT
    if _GENAI_CLIENT is not None:
        return _GENAI_CLIENT

    if not _API_KEY:
        display_message("API key not set. Set lectic.api_key or GEMINI_API_KEY.", error=True, prefix='Lectic')
        return None

    try:
        _GENAI_CLIENT = genai.Client(api_key=_API_KEY)
    except Exception as e:
        display_message(f"Could not create Gemini client: {e}", error=True, prefix='Lectic')
        return None
    log.log_info(f"Gemini client ready (model={_MODEL})")
    return _GENAI_CLIENT

def _parse_temperature(value):
    if value is None:
        return None
    try:
        temperature = float(value)
    except (TypeError, ValueError):
        display_message(f"Ignoring invalid temperature {value!r}", error=True, prefix='Lectic')
        return None
    if not 0.0 <= temperature <= 2.0:
        display_message(f"Ignoring temperature {temperature}: must be within 0-2", error=True, prefix='Lectic')
        return None
    return temperature

def create_generation_kwargs(contents, system_instruction=None, temperature=None, model=None):
    """
    Builds the keyword arguments of models.generate_content() for a Lectic
    conversation. Per-file settings win over the configured defaults.

    Args:
        contents (list): google.genai.types.Content turns.
        system_instruction (str, optional): The interlocutor prompt.
        temperature (str|float, optional): Per-file temperature.
        model (str, optional): Per-file model name.
    """
    config = types.GenerateContentConfig()

    temperature = _parse_temperature(temperature if temperature is not None else _TEMPERATURE)
    if temperature is not None:
        config.temperature = temperature
    if system_instruction:
        config.system_instruction = system_instruction

    return {'model': model or _MODEL, 'contents': contents, 'config': config}

def _caller():
    try:
        frame = inspect.stack()[2]
    except IndexError:
        return ''
    return f"[{os.path.basename(frame.filename)}:{frame.lineno}] "

def display_message(message, error=False, history=False, prefix='Himalaya'):
    """
    Echoes a message on the command line as "[prefix] message".

    Errors use :echoerr and are logged together with the file and line of
    the caller. history=True keeps other messages in :messages. An empty
    message clears the command line.
    """
    text = str(message).replace('\r', '').replace('\n', ' ')
    line = f"[{prefix}] {text}" if text else ''

    if error:
        log.log_error(f"{_caller()}{text}")
        command = 'echoerr'
    else:
        command = 'echom' if history else 'echo'

    quoted = line.replace("'", "''")
    try:
        vim.command(f"{command} '{quoted}'")
        if command == 'echo':
            # Shown immediately, without a hit-enter prompt.
            vim.command('redraw')
    except vim.error as e:
        log.log_error(f"Could not echo {line!r}: {e}")

def notify(message, error=False):
    """notify() sink handed to the core components."""
    display_message(message, error=error, history=True)

def new_split(vertical=True, position=None, size=None):
    """Opens a split for a new buffer and returns its window."""
    modifier = {'left': 'topleft ', 'right': 'botright '}.get(position, '')
    vim.command(f"{modifier}{size or ''}{'vnew' if vertical else 'new'}")
    return vim.current.window

def scratch_buffer(name, filetype, lines=None):
    """Turns the current buffer into a named scratch buffer holding lines."""
    vim.command(f"silent! file {name}")
    vim.command(f"setlocal buftype=nofile bufhidden=wipe filetype={filetype} noswapfile")
    if lines is not None:
        vim.current.buffer[:] = lines
    return vim.current.buffer

def set_modifiable(buffer, modifiable):
    buffer.options['modifiable'] = bool(modifiable)

def is_buffer_modified(buffer=None):
    if buffer is None:
        buffer = vim.current.buffer
    return bool(buffer.options['modified'])

def select(items, prompt):
    """
    Asks the user to pick one of items with inputlist().
    Returns the chosen item, or None if the prompt was dismissed.
    """
    choices = [prompt] + [f"{i}. {item}" for i, item in enumerate(items, 1)]
    try:
        answer = int(vim.eval(f"inputlist({json.dumps(choices)})"))
    except (vim.error, ValueError, TypeError): # Ctrl-C and friends.
        return None
    finally:
        vim.command("redraw")
    if 1 <= answer <= len(items):
        return items[answer - 1]
    return None

def prompt_input(prompt, default='', completion=None):
    """Reads a line with input(); returns None when cancelled or empty."""
    args = [prompt, default] + ([completion] if completion else [])
    try:
        value = vim.eval(f"input({', '.join(json.dumps(a) for a in args)})")
    except vim.error:
        return None
    finally:
        vim.command("redraw")
    value = (value or '').strip()
    return value or None

def is_headless():
    try:
        return not vim.eval("nvim_list_uis()")
    except vim.error:
        return False
