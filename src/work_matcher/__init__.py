"""Work Matcher agent: bidding, escrow-funding watch, and delivery."""
