# Overview: WSGI entrypoint used by `flask` commands and production servers.

from stockledger import create_app

app = create_app()
