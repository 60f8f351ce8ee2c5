"""Identity verification and the security tokens minted after it succeeds."""
