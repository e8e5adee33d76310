"""Source path resolution for File Copier.

The watched folder can be narrowed to the current month, e.g.
``D:\\Scans\\2024\\März``.  Month names come from the CLDR data shipped with
Babel so the folder name does not depend on the host's locale settings.
"""

import logging
import os
from datetime import date

from babel import Locale, UnknownLocaleError
from babel.dates import format_date

from file_copier.config import DEFAULT_MONTH_LOCALE, ConfigurationError

logger = logging.getLogger(__name__)


def month_folder_name(day: date, locale: str = DEFAULT_MONTH_LOCALE) -> str:
    """Return the full stand-alone month name of *day* in *locale*."""
    try:
        parsed = Locale.parse(locale)
    except (UnknownLocaleError, ValueError, TypeError) as exc:
        raise ConfigurationError(f"Unknown month folder locale {locale!r}") from exc
    # LLLL: stand-alone form, the one used in headings and folder names
    return format_date(day, "LLLL", locale=parsed)


def resolve_source_path(
    source_folder: str,
    use_month_folder: bool,
    locale: str = DEFAULT_MONTH_LOCALE,
    today: date | None = None,
) -> str:
    """
    Return the folder that should actually be watched.

    When *use_month_folder* is set, ``{year}/{month name}`` for *today*
    (default: the current date) is appended to *source_folder*.  No
    filesystem access happens here; the caller creates or checks the folder.
    """
    if not use_month_folder:
        return source_folder
    today = today or date.today()
    resolved = os.path.join(source_folder, str(today.year), month_folder_name(today, locale))
    logger.debug("Month folder enabled: %s -> %s", source_folder, resolved)
    return resolved
