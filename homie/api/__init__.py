"""HTTP API. The application factory lives in `homie.api.app`."""
