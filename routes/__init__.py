# routes/__init__.py
from .common import handle_sendfile_error
from .upload import bp as upload_bp
from .share import bp as share_bp
from errors import SendFileError

def register_routes(app):
    app.register_blueprint(upload_bp)
    app.register_blueprint(share_bp)
    app.register_error_handler(SendFileError, handle_sendfile_error)
