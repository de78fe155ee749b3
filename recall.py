#!/usr/bin/python3
#
# Session-aware shell command history with an interactive browser
#
# Copyright (c) 2021, Mitch Haile.
#
# MIT License
#

import os
import re
import sys
import shlex
import sqlite3
import getpass
import logging
import argparse
import subprocess
from datetime import datetime, timezone
from prompt_toolkit import Application
from prompt_toolkit.filters import Condition
from prompt_toolkit.key_binding import KeyBindings
from prompt_toolkit.layout import Layout, HSplit, Window
from prompt_toolkit.layout.containers import FloatContainer, Float, ConditionalContainer
from prompt_toolkit.layout.controls import FormattedTextControl
from prompt_toolkit.styles import Style
from prompt_toolkit.widgets import Frame

logger = logging.getLogger(__name__)

# Configuration (environment overrides are read at call time)
DEFAULT_DB_PATH = os.path.join("~", ".recall", "recall.db")
DEFAULT_LOG_FILE = os.path.join("~", ".recall", "recall.log")
DEFAULT_ALIAS_SHELL = "bash"
DEFAULT_HISTORY_LIMIT = 100
ALIAS_QUERY_TIMEOUT = 2
UNKNOWN_BINARY = "unknown"

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'


class RecallError(Exception):
    """Base class for every failure recall reports to the user"""


class StoreError(RecallError):
    """The history database could not be used"""


class StoreWriteError(StoreError):
    pass


class StoreReadError(StoreError):
    pass


class SessionCreationFailed(RecallError):
    """The session row could not be created or read back"""


class TerminalIOError(RecallError):
    """The interactive browser could not drive the terminal"""


class UnsupportedShellError(RecallError):
    pass


def get_db_path():
    """Location of the history database, honouring RECALL_DB_PATH"""
    override = os.environ.get("RECALL_DB_PATH")
    if override:
        return override
    return os.path.expanduser(DEFAULT_DB_PATH)


def get_log_file():
    override = os.environ.get("RECALL_LOG_FILE")
    if override:
        return override
    return os.path.expanduser(DEFAULT_LOG_FILE)


def safe_makedirs(path):
    """Safely create directories with error handling"""
    if not path:
        return True
    try:
        os.makedirs(path, exist_ok=True)
        return True
    except (OSError, PermissionError) as e:
        logger.error(f"Could not create directory {path}: {e}")
        return False


def setup_logging(debug=False):
    """Send log records to the recall log file, or stderr if it is unusable"""
    level = logging.DEBUG if debug else logging.WARNING
    log_file = get_log_file()
    if safe_makedirs(os.path.dirname(log_file)):
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=log_file, filemode='a')
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    # basicConfig is a no-op once configured
    logging.getLogger().setLevel(level)


def utc_now():
    return datetime.now(timezone.utc)


def format_timestamp(timestamp):
    """Serialize a timestamp so that text order equals time order"""
    return timestamp.astimezone(timezone.utc).isoformat(timespec='microseconds')


def parse_timestamp(text):
    timestamp = datetime.fromisoformat(text)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp


class CommandRecord:
    """One logged sub-command"""

    def __init__(self, command, binary, user, pwd, session_id, timestamp=None, id=None):
        self.id = id
        self.timestamp = timestamp or utc_now()
        self.command = command
        self.binary = binary
        self.user = user
        self.pwd = pwd
        self.session_id = session_id

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': format_timestamp(self.timestamp),
            'command': self.command,
            'binary': self.binary,
            'user': self.user,
            'pwd': self.pwd,
            'session_id': self.session_id,
        }

    def __repr__(self):
        return f"CommandRecord(id={self.id!r}, command={self.command!r}, session_id={self.session_id!r})"


class Session:
    def __init__(self, id, key, started_at, stopped_at=None):
        self.id = id
        self.key = key
        self.started_at = started_at
        self.stopped_at = stopped_at

    def to_dict(self):
        return {
            'id': self.id,
            'key': self.key,
            'started_at': format_timestamp(self.started_at),
            'stopped_at': format_timestamp(self.stopped_at) if self.stopped_at else None,
        }


# Command splitting and alias resolution

STATEMENT_SEPARATORS = re.compile(r'[;\n]')
LOGICAL_OPERATORS = ('&&', '||')


def _split_logical(statement):
    """Cut a statement at every && or ||, always at the leftmost operator"""
    fragments = []
    rest = statement
    while True:
        positions = [pos for pos in (rest.find(op) for op in LOGICAL_OPERATORS) if pos >= 0]
        if not positions:
            break
        cut = min(positions)
        fragments.append(rest[:cut])
        rest = rest[cut + 2:]
    fragments.append(rest)
    return fragments


def split_command_line(line):
    """Split a raw shell line into its pipeline stages, in the order written"""
    stages = []
    for statement in STATEMENT_SEPARATORS.split(line):
        for fragment in _split_logical(statement):
            for stage in fragment.split('|'):
                stage = stage.strip()
                if stage:
                    stages.append(stage)
    return stages


def parse_alias_definition(text):
    """Return the program an alias expands to, given `alias name` output"""
    if not text:
        return None
    first_line = text.splitlines()[0]
    _, sep, expansion = first_line.partition('=')
    if not sep:
        return None
    try:
        words = shlex.split(expansion)
    except ValueError as e:
        logger.debug(f"Malformed alias definition {first_line!r}: {e}")
        return None
    if not words:
        return None
    # the quoted right-hand side comes back as a single word
    target = words[0].split()
    return target[0] if target else None


class AliasResolver:
    """Resolver that never expands aliases; the invoked name is the binary"""

    def resolve(self, name):
        return name


class ShellAliasResolver(AliasResolver):
    """Ask the host shell whether a name is an alias and what it runs"""

    def __init__(self, shell=None, timeout=ALIAS_QUERY_TIMEOUT):
        self.shell = shell or os.environ.get("RECALL_ALIAS_SHELL") or DEFAULT_ALIAS_SHELL
        self.timeout = timeout
        self._cache = {}

    def _query_shell(self, script):
        result = subprocess.run(
            [self.shell, '-c', script],
            capture_output=True, text=True, timeout=self.timeout, check=False
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip()

    def resolve(self, name):
        if name not in self._cache:
            self._cache[name] = self._resolve(name)
        return self._cache[name]

    def _resolve(self, name):
        quoted = shlex.quote(name)
        try:
            if self._query_shell(f"type -t {quoted}") != 'alias':
                return name
            definition = self._query_shell(f"alias {quoted}")
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"Alias lookup for {name!r} failed: {e}")
            return name
        return parse_alias_definition(definition) or name


def parse_shell_command(line, resolver=None):
    """Turn a raw line into (sub-command, resolved binary) pairs"""
    if resolver is None:
        resolver = ShellAliasResolver()
    commands = []
    for stage in split_command_line(line):
        name = stage.split()[0]
        commands.append((stage, resolver.resolve(name)))
    return commands


# Session key discovery

def _read_proc_stat():
    """Fields of /proc/self/stat that follow the command name"""
    with open('/proc/self/stat') as f:
        stat = f.read()
    # comm may contain spaces, it ends at the last ')'
    return stat.rsplit(')', 1)[-1].split()


def key_from_systemd_session():
    session_id = os.environ.get('XDG_SESSION_ID')
    if session_id:
        return f"xdg:{session_id}"
    return None


def key_from_terminal():
    """Controlling terminal device plus its inode"""
    try:
        terminal = os.readlink('/proc/self/fd/0')
    except OSError:
        return None
    if not terminal.startswith('/dev/'):
        return None
    name = terminal[len('/dev/'):]
    try:
        inode = os.stat(terminal).st_ino
    except OSError:
        return f"term_{name}"
    return f"term_{name}_{inode}"


def key_from_process_session():
    fields = _read_proc_stat()
    # state, ppid, pgrp, session
    if len(fields) > 3:
        return f"process_sid_{fields[3]}"
    return None


def key_from_shell_pid():
    for variable, prefix in (('fish_pid', 'fish'), ('BASHPID', 'bash')):
        value = os.environ.get(variable)
        if value:
            return f"{prefix}_{value}"
    return None


def key_from_parent_pid():
    return f"shell_{os.getppid()}"


SESSION_KEY_SOURCES = (
    key_from_systemd_session,
    key_from_terminal,
    key_from_process_session,
    key_from_shell_pid,
    key_from_parent_pid,
)


def get_session_key(sources=SESSION_KEY_SOURCES):
    """Derive the session key from the first source that yields one"""
    for source in sources:
        try:
            key = source()
        except (OSError, ValueError) as e:
            logger.debug(f"Session key source {source.__name__} failed: {e}")
            continue
        if key:
            return key
    return "shell_unknown"


# Persistence

class HistoryStore:
    """Append-only command log in SQLite, grouped by session"""

    def __init__(self, db_file=None):
        self.db_file = db_file or get_db_path()
        self.init_db()

    def _connect(self):
        conn = sqlite3.connect(self.db_file)
        conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def init_db(self):
        """Create tables and indexes if they do not exist yet"""
        # shared by the read and the write path
        if not safe_makedirs(os.path.dirname(self.db_file)):
            raise StoreError(f"Could not create directory for {self.db_file}")
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StoreError(f"Could not open database {self.db_file}: {e}") from e

        try:
            cursor = conn.cursor()
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    started_at TEXT NOT NULL,
                    stopped_at TEXT
                )
            ''')
            cursor.execute('''
                CREATE TABLE IF NOT EXISTS command_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    timestamp TEXT NOT NULL,
                    command TEXT NOT NULL,
                    binary TEXT NOT NULL,
                    user TEXT NOT NULL,
                    pwd TEXT NOT NULL,
                    session_id INTEGER NOT NULL REFERENCES sessions(id)
                )
            ''')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_timestamp ON command_history(timestamp DESC)')
            cursor.execute('CREATE INDEX IF NOT EXISTS idx_session_id ON command_history(session_id)')
            conn.commit()
        except sqlite3.Error as e:
            logger.error(f"Database initialization failed: {e}")
            raise StoreError(f"Could not initialize database {self.db_file}: {e}") from e
        finally:
            conn.close()

    def find_session_id(self, key):
        """Id of the session with this key, or None"""
        try:
            conn = self._connect()
            try:
                row = conn.execute('SELECT id FROM sessions WHERE key = ?', (key,)).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Could not look up session {key!r}: {e}") from e
        return row[0] if row else None

    def create_session(self, key, started_at=None):
        """Insert a session row unless one with this key already exists"""
        started_at = started_at or utc_now()
        try:
            conn = self._connect()
            try:
                conn.execute(
                    'INSERT OR IGNORE INTO sessions (key, started_at) VALUES (?, ?)',
                    (key, format_timestamp(started_at))
                )
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Could not create session {key!r}: {e}") from e

    def get_session(self, session_id):
        try:
            conn = self._connect()
            try:
                row = conn.execute(
                    'SELECT id, key, started_at, stopped_at FROM sessions WHERE id = ?',
                    (session_id,)
                ).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Could not read session {session_id}: {e}") from e
        if row is None:
            return None
        stopped_at = parse_timestamp(row[3]) if row[3] else None
        return Session(row[0], row[1], parse_timestamp(row[2]), stopped_at)

    def log_command(self, record):
        """Append one record and mark its session as last active at the same instant"""
        timestamp = format_timestamp(record.timestamp)
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise StoreWriteError(f"Could not open database {self.db_file}: {e}") from e

        try:
            cursor = conn.cursor()
            cursor.execute('''
                INSERT INTO command_history (timestamp, command, binary, user, pwd, session_id)
                VALUES (?, ?, ?, ?, ?, ?)
            ''', (timestamp, record.command, record.binary, record.user, record.pwd,
                  record.session_id))
            record_id = cursor.lastrowid
            cursor.execute('UPDATE sessions SET stopped_at = ? WHERE id = ?',
                           (timestamp, record.session_id))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error(f"Could not log command {record.command!r}: {e}")
            raise StoreWriteError(f"Could not log command: {e}") from e
        finally:
            conn.close()

        record.id = record_id
        return record_id

    def fetch_recent(self, limit=DEFAULT_HISTORY_LIMIT):
        """Up to `limit` records, most recent first"""
        if limit < 0:
            raise ValueError(f"limit must not be negative, got {limit}")
        try:
            conn = self._connect()
            try:
                rows = conn.execute('''
                    SELECT id, timestamp, command, binary, user, pwd, session_id
                    FROM command_history
                    ORDER BY timestamp DESC, id DESC
                    LIMIT ?
                ''', (limit,)).fetchall()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreReadError(f"Could not read command history: {e}") from e

        return [CommandRecord(row[2], row[3], row[4], row[5], row[6],
                              timestamp=parse_timestamp(row[1]), id=row[0])
                for row in rows]


class SessionResolver:
    """Map session keys to persistent session ids, creating rows on first sight"""

    def __init__(self, store):
        self.store = store

    def resolve(self, key):
        try:
            session_id = self.store.find_session_id(key)
            if session_id is not None:
                return session_id
            self.store.create_session(key, utc_now())
            session_id = self.store.find_session_id(key)
        except StoreError as e:
            raise SessionCreationFailed(f"Could not create session {key!r}: {e}") from e
        if session_id is None:
            raise SessionCreationFailed(f"Session {key!r} missing right after it was created")
        return session_id


# Logging path

def get_user():
    user = os.environ.get('USER')
    if user:
        return user
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return "unknown"


def get_pwd():
    try:
        return os.getcwd()
    except OSError:
        return "unknown"


def log_command(raw_command, store=None, resolver=None, session_key=None, verbose=False):
    """Split a raw shell line and append every sub-command to the history"""
    if store is None:
        store = HistoryStore()
    commands = parse_shell_command(raw_command, resolver)
    if not commands:
        commands = [(raw_command, UNKNOWN_BINARY)]

    session_key = session_key or get_session_key()
    session_id = SessionResolver(store).resolve(session_key)
    user = get_user()
    pwd = get_pwd()

    records = []
    for command, binary in commands:
        record = CommandRecord(command, binary, user, pwd, session_id, timestamp=utc_now())
        store.log_command(record)
        logger.debug(f"Logged {command!r} ({binary}) in session {session_key} as {record.id}")
        if verbose:
            print(f"Command logged: {command} (Binary: {binary}, Session: {session_key}, ID: {record.id})")
        records.append(record)
    return records


# Browser state machine

ALL_COMMANDS_VIEW = "all"
SESSION_VIEW = "session"


class BrowserState:
    """Selection, session drill-down and live search over a history snapshot.

    `commands` is taken most recent first, as fetch_recent returns it, and
    kept newest-last so that indexes stay stable while filtering. The
    selection is always a valid index into visible_commands, or None when
    nothing is visible.

    Moving down past the last entry wraps to the first one; moving up
    stops at the first entry.
    """

    def __init__(self, commands):
        self.all_commands = list(reversed(commands))
        self.visible_commands = []
        self.selected = None
        self.session_view = None
        self.search_active = False
        self.search_query = ""
        self.show_help = False
        self.should_quit = False
        self._refresh()

    @property
    def view(self):
        return ALL_COMMANDS_VIEW if self.session_view is None else SESSION_VIEW

    @property
    def selected_command(self):
        if self.selected is None:
            return None
        return self.visible_commands[self.selected]

    def _filtered(self):
        commands = self.all_commands
        if self.session_view is not None:
            commands = [c for c in commands if c.session_id == self.session_view]
        if self.search_query:
            query = self.search_query.lower()
            commands = [c for c in commands if query in c.command.lower()]
        return commands

    def _refresh(self):
        """Recompute the visible list and select its most recent entry"""
        self.visible_commands = self._filtered()
        self.selected = len(self.visible_commands) - 1 if self.visible_commands else None

    def select_next(self):
        if not self.visible_commands:
            return
        if self.selected is None or self.selected >= len(self.visible_commands) - 1:
            self.selected = 0
        else:
            self.selected += 1

    def select_previous(self):
        if not self.visible_commands:
            return
        if self.selected is None or self.selected == 0:
            self.selected = 0
        else:
            self.selected -= 1

    def enter_session_view(self):
        if self.session_view is not None or self.search_active:
            return
        record = self.selected_command
        if record is None:
            return
        self.session_view = record.session_id
        self._refresh()

    def exit_session_view(self):
        if self.session_view is None:
            return
        self.session_view = None
        self._refresh()

    def toggle_search(self):
        if self.session_view is not None:
            return
        self.search_active = not self.search_active
        if not self.search_active:
            self.search_query = ""
            self._refresh()

    def add_search_char(self, char):
        if self.search_active:
            self.search_query += char
            self._refresh()

    def remove_search_char(self):
        if self.search_active and self.search_query:
            self.search_query = self.search_query[:-1]
            self._refresh()

    def toggle_help(self):
        self.show_help = not self.show_help

    def quit(self):
        self.should_quit = True

    def go_back(self):
        """Close the innermost context, or quit when there is none"""
        if self.show_help:
            self.show_help = False
        elif self.search_active:
            self.toggle_search()
        elif self.session_view is not None:
            self.exit_session_view()
        else:
            self.quit()

    def handle_key(self, key):
        """Apply one key press: a single character, or up/down/enter/backspace/escape/c-c"""
        if key == 'c-c':
            self.quit()
            return

        if self.show_help:
            if key in ('h', '?', 'b', 'escape'):
                self.show_help = False
            elif key == 'q':
                self.quit()
            return

        if self.search_active:
            if key == 'escape':
                self.toggle_search()
            elif key == 'backspace':
                self.remove_search_char()
            elif key == 'up':
                self.select_previous()
            elif key == 'down':
                self.select_next()
            elif len(key) == 1 and key.isprintable():
                self.add_search_char(key)
            return

        if key in ('up', 'k'):
            self.select_previous()
        elif key in ('down', 'j'):
            self.select_next()
        elif key == 'enter':
            self.enter_session_view()
        elif key == '/':
            self.toggle_search()
        elif key in ('h', '?'):
            self.toggle_help()
        elif key in ('b', 'escape'):
            self.go_back()
        elif key == 'q':
            self.quit()


# Browser rendering

SESSION_COLORS = [
    'ansired', 'ansigreen', 'ansiyellow', 'ansiblue', 'ansimagenta', 'ansicyan',
    'ansibrightred', 'ansibrightgreen', 'ansibrightyellow', 'ansibrightblue',
    'ansibrightmagenta', 'ansibrightcyan', 'ansibrightblack', 'ansigray',
]

BROWSER_STYLE = Style.from_dict({
    'title': 'fg:ansicyan bold',
    'selected': 'bg:ansibrightblue fg:ansiblack bold',
    'command': 'fg:ansiwhite bold',
    'label': 'fg:ansigray',
    'binary': 'fg:ansiyellow',
    'pwd': 'fg:ansiblue',
    'time': 'fg:ansigreen',
    'instructions': 'fg:ansigray',
    'search': 'fg:ansibrightblack',
    'search.active': 'fg:ansiwhite',
    'help': 'bg:ansiblack fg:ansiwhite',
    'help.heading': 'fg:ansiyellow bold',
})

TIME_UNITS = (
    ('year', 365 * 24 * 3600),
    ('month', 30 * 24 * 3600),
    ('day', 24 * 3600),
    ('hour', 3600),
    ('minute', 60),
)

HELP_SECTIONS = [
    ("Navigation:", ["  ↑/k        Move up", "  ↓/j        Move down"]),
    ("Actions:", [
        "  Enter      View session details",
        "  /          Search commands",
        "  h/?        Show/hide this help",
        "  b/Esc      Go back/quit",
        "  q          Quit application",
    ]),
    ("Info:", [
        "  Commands are sorted by recency (newest at bottom)",
        "  Colored circles (●) represent different sessions",
    ]),
]


def session_color(session_id):
    return SESSION_COLORS[session_id % len(SESSION_COLORS)]


def humanize_time(timestamp, now):
    """Relative time such as 'now' or '3 hours ago'"""
    seconds = int((now - timestamp).total_seconds())
    for unit, size in TIME_UNITS:
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'' if count == 1 else 's'} ago"
    return "now"


def _record_fragments(record, state, now):
    when = humanize_time(record.timestamp, now)
    color = session_color(record.session_id)
    if state.view == SESSION_VIEW:
        return [
            (f'fg:{color} bold', '● '), ('class:command', record.command), ('', '\n'),
            ('class:label', '  Binary: '), ('class:binary', record.binary),
            ('class:label', ' • PWD: '), ('class:pwd', record.pwd), ('', '\n'),
            ('', '  '), ('class:time', when), ('', '\n'),
            ('', '\n'),
        ]
    return [
        (f'fg:{color} bold', '● '), (f'fg:{color}', when),
        ('class:label', ' → '), ('class:command', record.command), ('', '\n'),
    ]


def render_command_list(state, now):
    """Formatted text for the visible commands, newest at the bottom"""
    fragments = []
    for index, record in enumerate(state.visible_commands):
        row = _record_fragments(record, state, now)
        if index == state.selected:
            fragments.append(('[SetCursorPosition]', ''))
            text = ''.join(part for _, part in row)
            fragments.append(('class:selected', '→ ' + text))
        else:
            fragments.append(('', '  '))
            fragments.extend(row)
    return fragments


def render_title(state):
    return [('class:title', "Session" if state.view == SESSION_VIEW else "All Commands")]


def render_instructions(state):
    if not state.visible_commands:
        text = "No commands found"
    elif state.view == SESSION_VIEW:
        text = "Viewing session • ↑/↓ or j/k to navigate • b/Esc to go back • q to quit"
    elif state.search_active:
        text = "Search mode • Type to search • Esc to exit search • ↑/↓ to navigate"
    else:
        text = "Use ↑/↓ or j/k to navigate • Enter to view session • / to search • h/? for help • q/Esc to quit"
    return [('class:instructions', text)]


def render_search_bar(state):
    if state.search_active:
        return [('class:search.active', f"Search: {state.search_query}_")]
    if state.search_query:
        return [('class:search', f"Search: {state.search_query}")]
    return [('class:search', "Press / to search...")]


def render_help():
    fragments = [('', '\n')]
    for heading, lines in HELP_SECTIONS:
        fragments.append(('class:help.heading', heading + '\n'))
        for line in lines:
            fragments.append(('', line + '\n'))
        fragments.append(('', '\n'))
    return fragments


def build_browser_application(state, now=utc_now, input=None, output=None):
    """prompt_toolkit application drawing `state` and feeding it key presses"""
    kb = KeyBindings()

    def bind(keys, name, eager=False):
        @kb.add(keys, eager=eager)
        def _(event):
            state.handle_key(name)
            if state.should_quit:
                event.app.exit()

    bind('up', 'up')
    bind('down', 'down')
    bind('enter', 'enter')
    bind('backspace', 'backspace')
    bind('escape', 'escape', eager=True)
    bind('c-c', 'c-c', eager=True)

    @kb.add('<any>')
    def _(event):
        char = event.data
        if len(char) != 1 or not char.isprintable():
            return
        state.handle_key(char)
        if state.should_quit:
            event.app.exit()

    list_window = Window(
        FormattedTextControl(lambda: render_command_list(state, now()), focusable=True, show_cursor=False),
        wrap_lines=False,
    )
    in_all_commands = Condition(lambda: state.view == ALL_COMMANDS_VIEW)

    body = HSplit([
        Frame(Window(FormattedTextControl(lambda: render_title(state)), height=1)),
        Frame(list_window),
        Frame(Window(FormattedTextControl(lambda: render_instructions(state)), height=1)),
        ConditionalContainer(
            Frame(
                Window(FormattedTextControl(lambda: render_search_bar(state)), height=1),
                title=lambda: "Search (active)" if state.search_active else "Search",
            ),
            filter=in_all_commands,
        ),
    ])
    help_panel = ConditionalContainer(
        Frame(Window(FormattedTextControl(render_help), width=60), title="Help", style='class:help'),
        filter=Condition(lambda: state.show_help),
    )
    root = FloatContainer(content=body, floats=[Float(content=help_panel)])

    return Application(
        layout=Layout(root, focused_element=list_window),
        key_bindings=kb,
        style=BROWSER_STYLE,
        full_screen=True,
        mouse_support=False,
        input=input,
        output=output,
    )


def run_browser(commands, input=None, output=None):
    """Browse `commands` (most recent first) until the user quits"""
    state = BrowserState(commands)
    app = build_browser_application(state, input=input, output=output)
    try:
        # prompt_toolkit leaves the alternate screen and raw mode on every exit path
        app.run()
    except Exception as e:
        logger.error(f"Browser failed: {e}")
        raise TerminalIOError(f"Terminal failure: {e}") from e
    return state


# Shell integration

HOOK_MARKER = "# recall command logger integration"

BASH_HOOK = '''
# recall command logger integration
__recall_log() {{
    local entry
    entry=$(HISTTIMEFORMAT= history 1)
    if [ -z "$entry" ] || [ "$entry" = "$__recall_last_entry" ]; then
        return
    fi
    __recall_last_entry=$entry
    {recall} log "$(printf '%s' "$entry" | sed 's/^[ ]*[0-9]*[ ]*//')" 2>/dev/null
}}
PROMPT_COMMAND="__recall_log${{PROMPT_COMMAND:+; $PROMPT_COMMAND}}"
'''

ZSH_HOOK = '''
# recall command logger integration
autoload -Uz add-zsh-hook
__recall_preexec() {{
    {recall} log "$1" 2>/dev/null
}}
add-zsh-hook preexec __recall_preexec
'''

FISH_HOOK = '''
# recall command logger integration
function recall_log_command --on-event fish_preexec
    {recall} log "$argv" 2>/dev/null &
end
'''

SHELL_HOOKS = {
    'bash': ('.bashrc', BASH_HOOK, "Please run 'source ~/.bashrc' or restart your terminal."),
    'zsh': ('.zshrc', ZSH_HOOK, "Please run 'source ~/.zshrc' or restart your terminal."),
    'fish': (os.path.join('.config', 'fish', 'config.fish'), FISH_HOOK, "Please restart your terminal."),
}


def get_executable_path():
    return os.path.abspath(sys.argv[0])


def install_shell_integration(shell, home=None, executable=None):
    """Append the logging hook to the shell's startup file; returns its path"""
    if shell not in SHELL_HOOKS:
        supported = ', '.join(SHELL_HOOKS)
        raise UnsupportedShellError(f"Unsupported shell: {shell}. Supported shells: {supported}")

    home = home or os.path.expanduser('~')
    executable = executable or get_executable_path()
    rc_name, hook, hint = SHELL_HOOKS[shell]
    rc_path = os.path.join(home, rc_name)
    os.makedirs(os.path.dirname(rc_path), exist_ok=True)

    if os.path.exists(rc_path):
        with open(rc_path) as f:
            if HOOK_MARKER in f.read():
                print(f"{shell.capitalize()} integration is already installed in {rc_path}.")
                return rc_path

    with open(rc_path, 'a') as f:
        f.write(hook.format(recall=shlex.quote(executable)))

    logger.info(f"Installed {shell} integration into {rc_path}")
    print(f"{shell.capitalize()} integration installed. {hint}")
    return rc_path


# Command line

def display_records(records):
    """Print records one per line, most recent first"""
    if not records:
        print("No commands found in history.")
        return
    for record in records:
        when = record.timestamp.astimezone().strftime('%Y-%m-%d %H:%M:%S')
        print(f"{when}  {record.command}  ({record.binary})")


def show_history(limit, store=None):
    """Load recent history and browse it interactively"""
    if store is None:
        store = HistoryStore()
    records = store.fetch_recent(limit)
    if not records:
        print("No commands found in history.")
        return None
    return run_browser(records)


def _non_negative_int(value):
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got {value}")
    return number


def build_parser():
    parser = argparse.ArgumentParser(prog='recall', description='Command history manager')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')
    parser.add_argument('--limit', '-n', type=_non_negative_int, default=DEFAULT_HISTORY_LIMIT,
                        metavar='N', help='Number of recent commands to load')
    subparsers = parser.add_subparsers(dest='subcommand')

    log_parser = subparsers.add_parser('log', help='Log a command line')
    log_parser.add_argument('command', help='Raw command line as typed')
    log_parser.add_argument('--verbose', '-v', action='store_true', help='Print every logged record')

    install_parser = subparsers.add_parser('install', help='Install shell integration')
    install_parser.add_argument('shell', nargs='?', help='bash, zsh or fish (default: bash)')
    install_parser.add_argument('--shell', '-s', dest='shell_option', metavar='SHELL',
                                help='Same as the positional SHELL')

    subparsers.add_parser('list', help='Print recent commands without the browser')
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.debug)

    if args.subcommand == 'log':
        try:
            log_command(args.command, verbose=args.verbose)
        except RecallError as e:
            logger.error(f"Error logging command: {e}")
            print(f"Error logging command: {e}", file=sys.stderr)
            return 1
        return 0

    if args.subcommand == 'install':
        shell = args.shell or args.shell_option or 'bash'
        try:
            install_shell_integration(shell)
        except (RecallError, OSError) as e:
            logger.error(f"Error installing shell integration: {e}")
            print(f"Error installing shell integration: {e}", file=sys.stderr)
            return 1
        return 0

    try:
        if args.subcommand == 'list':
            display_records(HistoryStore().fetch_recent(args.limit))
        else:
            show_history(args.limit)
    except RecallError as e:
        logger.error(f"Error fetching command history: {e}")
        print(f"Error fetching command history: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
