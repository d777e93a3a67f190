
"""Factory de sessão do SQLAlchemy 2."""
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

def create_session_factory(database_url: str, create_schema: bool = False):
    """Cria SessionFactory síncrona para SQLAlchemy 2.

    :param database_url: URL completa do banco (psycopg3 em produção, SQLite em testes).
    :param create_schema: cria as tabelas via metadata (dev/testes; produção usa Alembic).
    :return: sessionmaker configurado.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Sessões são usadas pelas threads do Flask, do dispatcher e do scheduler
        connect_args = {"check_same_thread": False, "timeout": 30}
    engine = create_engine(database_url, pool_pre_ping=True, future=True, connect_args=connect_args)
    if create_schema:
        from ..repo.models import Base
        Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
