"""Terminal inline-image transports: iTerm2 inline images and kitty graphics.

Protocol references:
    https://iterm2.com/documentation-images.html
    https://sw.kovidgoyal.net/kitty/graphics-protocol/
"""

import base64
import logging
import os
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TextIO

from ..config import ProtocolChoice
from ..errors import ProtocolMismatchError

logger = logging.getLogger(__name__)

ESC = "\x1b"
BEL = "\x07"

# Max base64 payload per kitty escape sequence; larger chunks are dropped
KITTY_CHUNK_SIZE = 4096
KITTY_PLACEHOLDER = "\U0010EEEE"

# Row/column diacritics for kitty unicode placeholders (rowcolumn-diacritics.txt)
KITTY_DIACRITICS = tuple(chr(cp) for cp in (
    0x0305, 0x030D, 0x030E, 0x0310, 0x0312, 0x033D, 0x033E, 0x033F, 0x0346, 0x034A, 0x034B, 0x034C, 0x0350,
    0x0351, 0x0352, 0x0357, 0x035B, 0x0363, 0x0364, 0x0365, 0x0366, 0x0367, 0x0368, 0x0369, 0x036A, 0x036B,
    0x036C, 0x036D, 0x036E, 0x036F, 0x0483, 0x0484, 0x0485, 0x0486, 0x0487, 0x0592, 0x0593, 0x0594, 0x0595,
    0x0597, 0x0598, 0x0599, 0x059C, 0x059D, 0x059E, 0x059F, 0x05A0, 0x05A1, 0x05A8, 0x05A9, 0x05AB, 0x05AC,
    0x05AF, 0x05C4, 0x0610, 0x0611, 0x0612, 0x0613, 0x0614, 0x0615, 0x0616, 0x0617, 0x0657, 0x0658, 0x0659,
    0x065A, 0x065B, 0x065D, 0x065E, 0x06D6, 0x06D7, 0x06D8, 0x06D9, 0x06DA, 0x06DB, 0x06DC, 0x06DF, 0x06E0,
    0x06E1, 0x06E2, 0x06E4, 0x06E7, 0x06E8, 0x06EB, 0x06EC, 0x0730, 0x0732, 0x0733, 0x0735, 0x0736, 0x073A,
    0x073D, 0x073F, 0x0740, 0x0741, 0x0743, 0x0745, 0x0747, 0x0749, 0x074A, 0x07EB, 0x07EC, 0x07ED, 0x07EE,
    0x07EF, 0x07F0, 0x07F1, 0x07F3, 0x0816, 0x0817, 0x0818, 0x0819, 0x081B, 0x081C, 0x081D, 0x081E, 0x081F,
    0x0820, 0x0821, 0x0822, 0x0823, 0x0825, 0x0826, 0x0827, 0x0829, 0x082A, 0x082B, 0x082C, 0x082D, 0x0951,
    0x0953, 0x0954, 0x0F82, 0x0F83, 0x0F86, 0x0F87, 0x135D, 0x135E, 0x135F, 0x17DD, 0x193A, 0x1A17, 0x1A75,
    0x1A76, 0x1A77, 0x1A78, 0x1A79, 0x1A7A, 0x1A7B, 0x1A7C, 0x1B6B, 0x1B6D, 0x1B6E, 0x1B6F, 0x1B70, 0x1B71,
    0x1B72, 0x1B73, 0x1CD0, 0x1CD1, 0x1CD2, 0x1CDA, 0x1CDB, 0x1CE0, 0x1DC0, 0x1DC1, 0x1DC3, 0x1DC4, 0x1DC5,
    0x1DC6, 0x1DC7, 0x1DC8, 0x1DC9, 0x1DCB, 0x1DCC, 0x1DD1, 0x1DD2, 0x1DD3, 0x1DD4, 0x1DD5, 0x1DD6, 0x1DD7,
    0x1DD8, 0x1DD9, 0x1DDA, 0x1DDB, 0x1DDC, 0x1DDD, 0x1DDE, 0x1DDF, 0x1DE0, 0x1DE1, 0x1DE2, 0x1DE3, 0x1DE4,
    0x1DE5, 0x1DE6, 0x1DFE, 0x20D0, 0x20D1, 0x20D4, 0x20D5, 0x20D6, 0x20D7, 0x20DB, 0x20DC, 0x20E1, 0x20E7,
    0x20E9, 0x20F0, 0x2CEF, 0x2CF0, 0x2CF1, 0x2DE0, 0x2DE1, 0x2DE2, 0x2DE3, 0x2DE4, 0x2DE5, 0x2DE6, 0x2DE7,
    0x2DE8, 0x2DE9, 0x2DEA, 0x2DEB, 0x2DEC, 0x2DED, 0x2DEE, 0x2DEF, 0x2DF0, 0x2DF1, 0x2DF2, 0x2DF3, 0x2DF4,
    0x2DF5, 0x2DF6, 0x2DF7, 0x2DF8, 0x2DF9, 0x2DFA, 0x2DFB, 0x2DFC, 0x2DFD, 0x2DFE, 0x2DFF, 0xA66F, 0xA67C,
    0xA67D, 0xA6F0, 0xA6F1, 0xA8E0, 0xA8E1, 0xA8E2, 0xA8E3, 0xA8E4, 0xA8E5, 0xA8E6, 0xA8E7, 0xA8E8, 0xA8E9,
    0xA8EA, 0xA8EB, 0xA8EC, 0xA8ED, 0xA8EE, 0xA8EF, 0xA8F0, 0xA8F1, 0xAAB0, 0xAAB2, 0xAAB3, 0xAAB7, 0xAAB8,
    0xAABE, 0xAABF, 0xAAC1, 0xFE20, 0xFE21, 0xFE22, 0xFE23, 0xFE24, 0xFE25, 0xFE26, 0x10A0F, 0x10A38, 0x1D185,
    0x1D186, 0x1D187, 0x1D188, 0x1D189, 0x1D1AA, 0x1D1AB, 0x1D1AC, 0x1D1AD, 0x1D242, 0x1D243, 0x1D244,
   ))

KITTY_TERMS = {"xterm-kitty", "xterm-ghostty"}
KITTY_TERM_PROGRAMS = {"kitty", "ghostty"}


class ImageProtocol(str, Enum):
    """Supported terminal image protocols."""
    ITERM = "iterm"
    KITTY = "kitty"


class Passthrough(str, Enum):
    """Multiplexer passthrough wrapping."""
    NONE = "none"
    TMUX = "tmux"

    def escape_strings(self) -> tuple[str, str, str]:
        """(start, escape, end) strings for wrapping a sequence."""
        if self == Passthrough.TMUX:
            # tmux wants escapes doubled inside a DCS passthrough block
            return (f"{ESC}Ptmux;", ESC + ESC, f"{ESC}\\")
        return ("", ESC, "")


@dataclass(frozen=True)
class TerminalSignals:
    """Environment signals used to pick an image protocol."""
    term: str = ""
    term_program: str = ""
    kitty_window_id: str = ""
    ghostty_resources_dir: str = ""

    @classmethod
    def from_environ(cls, env: Mapping[str, str] | None = None) -> "TerminalSignals":
        env = os.environ if env is None else env
        return cls(
            term=env.get("TERM", ""),
            term_program=env.get("TERM_PROGRAM", ""),
            kitty_window_id=env.get("KITTY_WINDOW_ID", ""),
            ghostty_resources_dir=env.get("GHOSTTY_RESOURCES_DIR", ""),
        )

    @property
    def names_kitty(self) -> bool:
        return bool(
            self.kitty_window_id
            or self.ghostty_resources_dir
            or self.term in KITTY_TERMS
            or self.term_program.lower() in KITTY_TERM_PROGRAMS
        )


def select_protocol(choice: ProtocolChoice, signals: TerminalSignals) -> ImageProtocol:
    """Map a protocol selector and observed signals to a protocol.

    Unknown terminals get the iTerm2 protocol.
    """
    choice = ProtocolChoice(choice)
    if choice == ProtocolChoice.ITERM:
        return ImageProtocol.ITERM
    if choice == ProtocolChoice.KITTY:
        return ImageProtocol.KITTY
    if signals.names_kitty:
        return ImageProtocol.KITTY
    return ImageProtocol.ITERM


def detect_passthrough(signals: TerminalSignals) -> Passthrough:
    if signals.term.startswith("tmux") or signals.term_program == "tmux":
        return Passthrough.TMUX
    return Passthrough.NONE


def to_base64(data: bytes) -> str:
    return base64.standard_b64encode(data).decode("ascii")


def encode_iterm2(data: bytes, columns: int, rows: int) -> str:
    """Wrap image bytes in a single iTerm2 inline-image sequence."""
    return (
        f"{ESC}]1337;File=size={len(data)};width={columns};height={rows};"
        f"preserveAspectRatio=0;inline=1:{to_base64(data)}{BEL}"
    )


def frame_kitty_chunks(
    payload: str,
    header: str = "",
    chunk_size: int = KITTY_CHUNK_SIZE,
    escape: str = ESC,
) -> list[str]:
    """Split a base64 payload into kitty APC sequences.

    The header goes on the first chunk only. Every chunk but the last
    carries ``m=1``; the last carries ``m=0``.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    chunks = [payload[i:i + chunk_size] for i in range(0, len(payload), chunk_size)] or [""]
    sequences = []
    for i, chunk in enumerate(chunks):
        more = 1 if i < len(chunks) - 1 else 0
        control = header if i == 0 else ""
        sequences.append(f"{escape}_G{control}m={more};{chunk}{escape}\\")
    return sequences


def kitty_placeholder_cells(columns: int, rows: int, image_id: int) -> str:
    """Unicode placeholder cells that place a transmitted image."""
    id_high = (image_id >> 24) & 0xFF
    red, green, blue = (image_id >> 16) & 0xFF, (image_id >> 8) & 0xFF, image_id & 0xFF
    id_mark = KITTY_DIACRITICS[id_high]

    parts = [f"{ESC}[38;2;{red};{green};{blue}m"]
    for y in range(rows):
        if y > 0:
            parts.append(f"{ESC}[1B{ESC}[{columns}D")
        row_mark = KITTY_DIACRITICS[y] if y < len(KITTY_DIACRITICS) else KITTY_DIACRITICS[0]
        for x in range(columns):
            col_mark = KITTY_DIACRITICS[x] if x < len(KITTY_DIACRITICS) else KITTY_DIACRITICS[0]
            parts.append(f"{KITTY_PLACEHOLDER}{row_mark}{col_mark}{id_mark}")
    parts.append(f"{ESC}[39m")
    return "".join(parts)


def encode_kitty(
    data: bytes,
    columns: int,
    rows: int,
    image_id: int,
    passthrough: Passthrough = Passthrough.NONE,
    chunk_size: int = KITTY_CHUNK_SIZE,
) -> str:
    """Transmit image bytes in chunks and place them with unicode placeholders."""
    start, escape, end = passthrough.escape_strings()
    header = f"q=2,a=T,f=100,C=1,U=1,c={columns},r={rows},i={image_id},"
    sequences = frame_kitty_chunks(to_base64(data), header, chunk_size, escape)
    return start + "".join(sequences) + end + kitty_placeholder_cells(columns, rows, image_id)


class Transport:
    """Encodes PNG bytes for one image protocol."""

    def __init__(self, protocol: ImageProtocol, passthrough: Passthrough = Passthrough.NONE):
        self.protocol = ImageProtocol(protocol)
        self.passthrough = Passthrough(passthrough)

    @classmethod
    def detect(cls, choice: ProtocolChoice, env: Mapping[str, str] | None = None) -> "Transport":
        """One-time startup selection from the protocol selector and environment."""
        signals = TerminalSignals.from_environ(env)
        protocol = select_protocol(choice, signals)
        passthrough = detect_passthrough(signals)
        logger.info(f"Using {protocol.value} image protocol (passthrough: {passthrough.value})")
        return cls(protocol, passthrough)

    def __repr__(self) -> str:
        return f"Transport({self.protocol.value}, {self.passthrough.value})"

    def encode(self, png: bytes, columns: int, rows: int, image_id: int = 1) -> bytes:
        """Transport-ready escape sequence bytes for one image."""
        if self.protocol == ImageProtocol.KITTY:
            text = encode_kitty(png, columns, rows, image_id, self.passthrough)
        else:
            text = encode_iterm2(png, columns, rows)
        return text.encode("utf-8")


class TerminalWriter:
    """Serialized writer for image sequences and text.

    Image emission is skipped when the stream is not a terminal, so a
    redirected stdout never receives escape sequences.
    """

    def __init__(self, stream: TextIO, transport: Transport, require_tty: bool = True):
        self.stream = stream
        self.transport = transport
        self._lock = threading.Lock()
        self.images_enabled = True

        if require_tty:
            try:
                self._check_stream()
            except ProtocolMismatchError as e:
                logger.warning(f"Image output disabled: {e}")
                self.images_enabled = False

    def _check_stream(self) -> None:
        isatty = getattr(self.stream, "isatty", None)
        if isatty is None or not isatty():
            raise ProtocolMismatchError("output stream is not a terminal")

    def emit(self, data: bytes) -> bool:
        """Write one transport-ready image. Returns False when skipped."""
        with self._lock:
            if not self.images_enabled:
                return False
            self.stream.write(data.decode("utf-8"))
            self.stream.flush()
            return True

    def write_text(self, text: str) -> None:
        with self._lock:
            self.stream.write(text)
            self.stream.flush()
