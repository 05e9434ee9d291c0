"""DocLedger persistence — declarative tables and the Database session pool."""
