"""Job Registry agent: client-side job lifecycle, escrow setup, and settlement."""
