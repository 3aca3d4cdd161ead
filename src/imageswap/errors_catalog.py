"""Actionable error catalog for imageswap."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "registry_timeout": {
        "what": "Timed out while contacting the registry at {registry}.",
        "next": "Check the network connection or choose a faster registry, then retry.",
    },
    "registry_dns": {
        "what": "Could not resolve the registry host {registry}.",
        "next": "Check DNS settings or the registry URL.",
    },
    "registry_connection_refused": {
        "what": "The registry at {registry} refused the connection.",
        "next": "Verify the registry URL and port, or try another registry.",
    },
    "registry_unreachable": {
        "what": "The registry at {registry} is unreachable.",
        "next": "Check the network connection and retry later.",
    },
    "registry_http_error": {
        "what": "The registry at {registry} answered with HTTP {status}.",
        "next": "Check that repository `{repository}` exists and is public.",
    },
    "registry_invalid_response": {
        "what": "The registry at {registry} returned an unexpected tag listing.",
        "next": "Point `registry` at a Docker Hub compatible API.",
    },
    "registry_request_invalid": {
        "what": "The request to the registry at {registry} is invalid: {detail}",
        "next": "Check the `registry` setting; it must be a full http(s) URL.",
    },
    "not_in_container": {
        "what": "The application is not running in a managed Docker container.",
        "next": "Self-update is only available for container deployments; update manually otherwise.",
    },
    "container_identity_unknown": {
        "what": "Unable to determine the current container id or name.",
        "next": "Set the HOSTNAME environment variable to the container name.",
    },
    "update_in_progress": {
        "what": "An update of container {container} is already running.",
        "next": "Wait for the running update to finish before starting another one.",
    },
    "rollback_failed": {
        "what": "Update failed and rollback of {container} also failed.",
        "next": "Recreate the container manually from the backup container `{backup}` or image `{image}`.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
