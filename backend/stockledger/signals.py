# Overview: Application signals emitted by the stock core.

from blinker import Namespace

_signals = Namespace()

# Sent once per affected (product_id, branch_id) after a stock mutation commits.
# sender: the Flask app; kwargs: product_id, branch_id
stock_changed = _signals.signal("stock-changed")


def emit_stock_changed(app, keys) -> None:
    for product_id, branch_id in sorted(set(keys)):
        stock_changed.send(app, product_id=product_id, branch_id=branch_id)
