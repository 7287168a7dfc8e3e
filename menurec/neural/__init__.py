"""
Neural scoring model and its training lifecycle.

Responsibilities:
- Learn user/item latent factors from the interaction log.
- Fit a small feed-forward regressor predicting implicit ratings.
- Run training as a single-flight background job with a pollable status.
"""
