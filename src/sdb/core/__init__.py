"""SDB core: configuration, errors, paths and the Database facade."""
