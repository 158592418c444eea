# Overview: Extension instances shared by the auction ledger; bound to the app in create_app().

from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

# Models, services and the Alembic revisions all use this one metadata
db = SQLAlchemy()
migrate = Migrate()
