import logging

import requests

DEFAULT_TIMEOUT_SECONDS = 20
DEFAULT_USER_AGENT = "poster-resolver/1.0"


class ProviderError(Exception):
    def __init__(self, provider, status_code, message=None):
        self.provider = provider
        self.status_code = status_code
        super().__init__(message or f"{provider} returned HTTP {status_code}")


def _bounded_timeout(cancel, timeout):
    if cancel is None:
        return timeout
    cancel.check()
    remaining = cancel.remaining(timeout)
    # Leave requests a small floor; the token is re-checked after the call.
    return max(0.5, remaining)


class ProviderClient:
    provider_name = "provider"

    def __init__(self, *, session=None, timeout=DEFAULT_TIMEOUT_SECONDS, user_agent=DEFAULT_USER_AGENT):
        self._session = session or requests.Session()
        self._timeout = timeout
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}

    @property
    def enabled(self):
        return True

    def _request(self, method, url, *, cancel=None, params=None, headers=None, data=None, accept_json=True):
        merged = dict(self._headers)
        if headers:
            merged.update(headers)
        if not accept_json:
            merged.pop("Accept", None)
        response = self._session.request(
            method,
            url,
            params=params,
            headers=merged,
            data=data,
            timeout=_bounded_timeout(cancel, self._timeout),
        )
        if cancel is not None:
            cancel.check()
        return response

    def _get_json(self, url, *, cancel=None, params=None, headers=None, method="GET", data=None):
        response = self._request(method, url, cancel=cancel, params=params, headers=headers, data=data)
        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ProviderError(self.provider_name, response.status_code)
        try:
            return response.json()
        except ValueError:
            logging.warning("%s returned invalid JSON for %s", self.provider_name, url)
            return None

    def download_image(self, url, cancel=None):
        if not url:
            return None
        response = self._request("GET", url, cancel=cancel, accept_json=False)
        if response.status_code != 200:
            logging.debug("%s image download failed (%s) for %s", self.provider_name, response.status_code, url)
            return None
        data = response.content
        return data or None


def parse_year(value):
    if not value:
        return None
    text = str(value).strip()
    if len(text) >= 4 and text[:4].isdigit():
        year = int(text[:4])
        if 1800 <= year <= 2100:
            return year
    return None
