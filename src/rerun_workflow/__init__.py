"""Re-run pull request CI workflows driven by control labels."""
