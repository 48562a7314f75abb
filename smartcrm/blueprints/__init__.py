"""
smartcrm/blueprints

JSON API blueprints (auth, objects, tasks, proposals/invoices).
Each package exposes its Blueprint object from routes.py.
"""
