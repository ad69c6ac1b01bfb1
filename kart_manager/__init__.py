import os
from flask import Flask


def create_app():
    app = Flask(__name__)

    db_url = os.environ.get("DATABASE_URL")
    if db_url:
        from . import datastore_pg as _pg
        try:
            minconn = int(os.environ.get("DB_POOL_MIN", "1"))
        except ValueError:
            minconn = 1
        try:
            maxconn = int(os.environ.get("DB_POOL_MAX", "10"))
        except ValueError:
            maxconn = 10
        # Direct connections still work if the pool or schema setup fails
        try:
            _pg.init_pool(minconn=minconn, maxconn=maxconn)
            _pg.ensure_schema()
        except Exception:  # pylint: disable=broad-except
            app.logger.exception("PostgreSQL initialization failed; continuing without pool")
    else:
        from . import datastore_json as _json
        app.logger.info("DATABASE_URL not set; using JSON store at %s", _json.store_path())

    from . import routes
    app.register_blueprint(routes.bp)

    return app


if __name__ == '__main__':
    port = int(os.environ.get('PORT', 5000))
    create_app().run(host='0.0.0.0', port=port)
