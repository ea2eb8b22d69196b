import re, time
from google.genai import types

LECTIC_FILETYPE = 'lectic.markdown'

DEFAULT_NAME = 'Assistant'

TEMPLATE = """---
interlocutor:
  # Required fields
  name: Computer Scientist
  prompt: You are an expert logician and computer scientist specializing in RL and agentic reasoning in AI.

  # Optional model configuration
  # model: gemini-2.5-flash     # Model selection
  # temperature: 0.7            # Response variability (0-2)
---

<!-- Instructions: Write your prompt below, then use :LecticSubmit to submit it,
or select text and use :LecticSelection to submit just that selection. -->

"""

# Line of the template where the user starts typing (1-based).
TEMPLATE_CURSOR_LINE = 13

_INTERLOCUTOR_KEY_RE = re.compile(r'^\s+([A-Za-z_]+):\s*(.*?)\s*$')
_COMMENT_RE = re.compile(r'<!--.*?-->', re.S)
_BLOCK_OPEN_RE = re.compile(r'^:::\s*(\S.*?)\s*$')

def default_filename(now=None):
    return time.strftime('lectic-%Y-%m-%d.lec', time.localtime(now))

def ensure_extension(path):
    return path if path.endswith('.lec') else path + '.lec'

def format_submission(selection, message):
    """Formats a selection plus the user's question the way it is appended to a conversation."""
    return f"Text Selection:\n{selection}\n\nUser Message:\n{message}"

def append_lines(lines, text):
    """
    Returns the lines to add at the end of a buffer so that text follows the
    existing content after exactly one blank line.
    """
    new_lines = text.split('\n')
    if lines and lines[-1].strip():
        return [''] + new_lines
    return new_lines

def parse_front_matter(lines):
    """
    Reads the interlocutor settings from the YAML front matter.

    Returns:
        tuple: (settings, body_start) where settings holds the string values
        found under `interlocutor:` and body_start is the index of the first
        line after the front matter.
    """
    settings = {}
    if not lines or lines[0].strip() != '---':
        return settings, 0

    in_interlocutor = False
    for index in range(1, len(lines)):
        line = lines[index]
        if line.strip() == '---':
            return settings, index + 1
        if not line.strip() or line.lstrip().startswith('#'):
            continue
        if not line[0].isspace():
            in_interlocutor = line.strip() == 'interlocutor:'
            continue
        if in_interlocutor:
            match = _INTERLOCUTOR_KEY_RE.match(line)
            if match:
                key, value = match.groups()
                value = re.sub(r'\s+#.*$', '', value).strip().strip('"\'')
                settings[key] = value

    # Unterminated front matter: treat the whole file as body.
    return {}, 0

def split_turns(lines, body_start=0):
    """
    Splits the conversation body into (role, text) turns. Text inside
    `:::Name` ... `:::` blocks belongs to the model, everything else to the
    user. HTML comments are dropped.
    """
    turns = []
    current_role = 'user'
    current = []

    def flush():
        text = _COMMENT_RE.sub('', '\n'.join(current)).strip()
        if text:
            if turns and turns[-1][0] == current_role:
                turns[-1] = (current_role, turns[-1][1] + '\n\n' + text)
            else:
                turns.append((current_role, text))
        current.clear()

    for line in lines[body_start:]:
        if current_role == 'user' and _BLOCK_OPEN_RE.match(line):
            flush()
            current_role = 'model'
            continue
        if current_role == 'model' and line.strip() == ':::':
            flush()
            current_role = 'user'
            continue
        current.append(line)
    flush()
    return turns

def build_contents(turns):
    return [
        types.Content(role=role, parts=[types.Part.from_text(text=text)])
        for role, text in turns
    ]

def format_response(name, text):
    return [f":::{name or DEFAULT_NAME}"] + text.strip().split('\n') + [':::']
