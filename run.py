"""
Entry point for Flask.

Usage (from project root):

    flask --app run.py create-admin
    flask --app run.py seed-catalog
    flask --app run.py --debug run

"""

from smartcrm import create_app

# WSGI application object; `flask run` looks for this `app` variable.
app = create_app()

if __name__ == "__main__":
    # Dev only; use a WSGI server in production.
    app.run(debug=True)
