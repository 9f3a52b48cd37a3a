from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager
from flask_migrate import Migrate
from authlib.integrations.flask_client import OAuth


db = SQLAlchemy()
migrate = Migrate()
oauth = OAuth()
login_manager = LoginManager()
login_manager.login_view = 'auth.signin'
