"""SDB components: storage, locking, querying and maintenance."""
