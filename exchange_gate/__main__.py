"""Allow running the gateway with python -m exchange_gate."""

from exchange_gate.runner import main

main()
