# --- Global log sanitizer to stop HTML body spam --------------------------------
# WordPress answers some REST failures (WAF blocks, fatal PHP errors, maintenance
# mode) with a full HTML page. Those bodies end up in exception messages and logs.
import logging, re

_HTML_SIG_RE = re.compile(r'(?is)<!DOCTYPE html|<html[^>]*>')
_TITLE_RE    = re.compile(r'(?is)<title[^>]*>(.*?)</title>')
_TAG_RE      = re.compile(r'(?is)<[^>]+>')
_SCRIPT_RE   = re.compile(r'(?is)<(script|style)[^>]*>.*?</\1>')

def _strip_tags(s: str) -> str:
    s = _SCRIPT_RE.sub('', s)
    s = _TAG_RE.sub(' ', s)
    return re.sub(r'\s+', ' ', s).strip()

def looks_like_html(s: str) -> bool:
    return bool(s) and bool(_HTML_SIG_RE.search(s))

def summarize_html(s: str, limit: int = 200) -> str:
    title = None
    m = _TITLE_RE.search(s)
    if m:
        title = _strip_tags(m.group(1))
    preview = title or _strip_tags(s)[:limit]
    return f"{preview} [HTML {len(s)} chars trimmed]"

def trim_body(s: str | None, limit: int = 200) -> str:
    """Response body suitable for an error message: HTML pages summarized, the rest passed through."""
    if not s:
        return ""
    if looks_like_html(s):
        return summarize_html(s, limit)
    return s

class HtmlTrimFilter(logging.Filter):
    """If a log message contains a large HTML blob, replace it with a short summary."""
    def filter(self, record: logging.LogRecord) -> bool:
        try:
            msg = record.getMessage()
            if isinstance(msg, str) and len(msg) > 200 and looks_like_html(msg):
                record.msg = summarize_html(msg)
                record.args = ()
        except Exception:
            pass
        return True

def install(names=("", "uvicorn", "uvicorn.error")) -> None:
    for _name in names:
        logger = logging.getLogger(_name)
        if not any(isinstance(f, HtmlTrimFilter) for f in logger.filters):
            logger.addFilter(HtmlTrimFilter())
# --------------------------------------------------------------------------------
