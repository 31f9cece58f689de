from sqlite3 import Connection

import structlog
from sqlalchemy import Engine, create_engine
from sqlalchemy.event import listen

log = structlog.get_logger()


def set_sqlite_pragmas(dbapi_connection: Connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys = ON")
    # the reference backend is served from several request threads
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()
    log.debug("sqlite_pragmas_set")


def get_engine(db_file: str = "./todos.db", echo=False) -> Engine:
    engine: Engine = create_engine(
        "sqlite:///" + db_file,
        echo=echo,
        connect_args={"check_same_thread": False},
    )
    listen(engine, "connect", set_sqlite_pragmas)
    return engine
