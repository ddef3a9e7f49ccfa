"""Display-name cleanup for documents printed to the shared folder.

Print drivers and "print to file" dialogs produce names such as
``Relat_303_263rio - Microsoft Word-job_42.pdf``. ``sanitize_file_name``
turns that into ``Relatório.pdf``. It never raises: on any internal
failure the original name is returned unchanged.
"""
import logging
import re

logger = logging.getLogger(__name__)

_JOB_SUFFIX = re.compile(r"-job_\d+\.pdf$", re.IGNORECASE)

_APP_NAMES = (
    "Bloco de notas|Notepad|Microsoft Word|Word|Microsoft Excel|Excel|PowerPoint|"
    "LibreOffice|OpenOffice|Writer|Calc|Mozilla Firefox|Firefox|Google Chrome|Chrome|"
    "Adobe Reader|Acrobat Reader|PDF Reader|Paint|Photoshop|Illustrator|TextEdit|"
    "Sublime Text|VSCode|Visual Studio|Outlook|Thunderbird|Teams|Zoom|Skype"
)
_APP_ANNOTATION = re.compile(
    rf"(?:[_\s]*[-–—][-–—]*[_\s]*|[_\s]+-)(?:{_APP_NAMES})(?:\s*[-–—][_\s]*|[_\s]+)",
    re.IGNORECASE,
)
_SOURCE_ANNOTATION = re.compile(
    r"(?:_-_|_-|\s-\s|\s-|-)(?:[A-Za-zÀ-ÖØ-öø-ÿ0-9\s]+)(?=-job_|\.|$)",
    re.IGNORECASE,
)

# Octal UTF-8 byte pairs that Samba/CUPS leave in names when the client
# codepage is wrong (e.g. "ó" = 0xC3 0xB3 = 303 263)
ACCENT_MAP = {
    "303_263": "ó",
    "303_243": "ã",
    "303_247": "ç",
    "303_265": "õ",
    "303_251": "é",
    "303_245": "å",
    "303_252": "ê",
    "303_255": "í",
    "303_272": "ú",
    "303_250": "è",
    "303_241": "á",
    "303_261": "ñ",
    "303_246": "æ",
    "303_266": "ö",
    "303_240": "à",
    "303_242": "â",
    "303_264": "ô",
    "303_201": "Á",
    "303_207": "Ç",
    "303_211": "É",
    "303_223": "Ó",
    "303_244": "ä",
    "303_274": "ü",
}
_ACCENT_PATTERNS = [
    (re.compile(rf"_{code}_|_{code}|{code}"), letter) for code, letter in ACCENT_MAP.items()
]

_DOUBLE_EXTENSION = re.compile(
    r"\.(txt|doc|docx|xls|xlsx|ppt|pptx|odt|ods|odp|html|htm)\.(pdf)$", re.IGNORECASE
)
_PDF_PDF = re.compile(r"\.pdf\.pdf$", re.IGNORECASE)
_WHITESPACE = re.compile(r"\s+")


def sanitize_file_name(file_name: str) -> str:
    try:
        clean = _JOB_SUFFIX.sub(".pdf", file_name)
        clean = _APP_ANNOTATION.sub("", clean, count=1)
        clean = _SOURCE_ANNOTATION.sub("", clean, count=1)

        for pattern, letter in _ACCENT_PATTERNS:
            clean = pattern.sub(letter, clean)

        clean = clean.replace("_", " ")
        clean = _DOUBLE_EXTENSION.sub(r".\2", clean)
        clean = _WHITESPACE.sub(" ", clean).strip()
        clean = _PDF_PDF.sub(".pdf", clean)
        return clean
    except Exception as e:
        logger.warning(f"Could not sanitize file name {file_name!r}: {e}")
        return file_name
