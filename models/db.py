from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import event

db = SQLAlchemy()


def use_immediate_transactions(engine):
    """
    SQLite only: open every transaction with BEGIN IMMEDIATE so writers queue
    on the database lock instead of failing with "database is locked" when a
    read lock would have to be upgraded. The overlap triggers then run with
    one writer at a time.
    """
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
