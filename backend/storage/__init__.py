"""SQLite storage for request records, sharing, visits and quota counters.

Data layout:
  data/
    movie_games.sqlite   One database file:
      requests           One row per generate/import call; owner ip, status,
                         sanitized request payload, raw model response and
                         the validated template (camelCase JSON)
      shared_records     Share state per request (one row per request)
      visits             Play log for shared games
      quota_events       One row per admitted quota event, pruned after 2 days
    config.json          Service settings (LLM endpoint, extra sensitive words)
    sensitive_words.txt  Optional disallowed-term list, one per line

Connections are opened per call in autocommit mode; writes run inside an
explicit transaction(). Quota checks use BEGIN IMMEDIATE so the count and
the insert happen under SQLite's write lock.

Config: get_config() returns defaults merged with stored values and
LLM_* environment overrides; it is read-only at runtime.
"""

# Re-export all public symbols so `from backend import storage` keeps working.

from .core import (  # noqa: F401
    connect,
    data_dir,
    db_path,
    init_storage,
    transaction,
)

from .records import (  # noqa: F401
    SOURCE_IMPORT,
    STATUS_CANCEL,
    STATUS_ERROR,
    STATUS_SUCCESS,
    create_imported_request,
    create_request,
    delete_record,
    finish_request,
    get_request,
    get_share_meta,
    get_template,
    list_records,
    record_visit,
    replace_template,
    set_shared,
)

from .counters import (  # noqa: F401
    SqliteCounterStore,
)

from .config import (  # noqa: F401
    get_config,
    server_api_key,
)
