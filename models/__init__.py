"""
ORM models and the SQLAlchemy-backed store for the LabBook API.
Import DBStorage from models.db_storage and pass the instance explicitly.
"""
