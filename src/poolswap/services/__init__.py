"""Balance, allowance, slippage, quoting and execution services."""
