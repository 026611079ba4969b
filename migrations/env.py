from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import create_engine, pool

load_dotenv()

from gatherings.config import get_settings  # noqa: E402  (after .env is loaded)
from gatherings.models import Base  # noqa: E402

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Alembic runs on the sync driver; derived from DATABASE_URL unless SYNC_DATABASE_URL is set
DB_URL = get_settings().sync_database_url

# capacity/status changes are type and constraint edits; make autogenerate see them
CONFIGURE_OPTS = dict(target_metadata=Base.metadata, compare_type=True, compare_server_default=True)


def run_migrations_offline() -> None:
    context.configure(url=DB_URL, literal_binds=True, dialect_opts={"paramstyle": "named"}, **CONFIGURE_OPTS)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(DB_URL, poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(connection=connection, **CONFIGURE_OPTS)
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
