"""Business services built on the credential layer."""
