"""
Amazon Neptune graph database client for the openCypher HTTPS endpoint with AWS SigV4 authentication.
"""

import json
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from boto3 import Session
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest

from .config import NeptuneConfig
from .logging_config import get_logger

logger = get_logger(__name__)


class NeptuneError(Exception):
    """Custom exception for Neptune errors."""
    pass


class NeptuneSession:
    """Short-lived openCypher session bound to one HTTP connection pool.

    A session is opened per logical operation and must be closed by the caller,
    typically in a `finally` block.
    """

    def __init__(self, client: 'NeptuneClient'):
        self.client = client
        self.http = requests.Session()
        self.closed = False

    def run(self, query: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Execute a parameterized openCypher statement.

        Args:
            query: openCypher statement
            parameters: Statement parameters (must be JSON serialisable)

        Returns:
            List of result rows keyed by RETURN alias

        Raises:
            NeptuneError: If the request fails or the response is malformed
        """
        if self.closed:
            raise NeptuneError('Session is closed')

        body = urlencode({'query': query, 'parameters': json.dumps(parameters or {})})
        headers = self.client.sign(body)

        try:
            response = self.http.post(self.client.url, data=body, headers=headers, timeout=self.client.config.timeout_seconds)
        except requests.RequestException as e:
            logger.error(f'Neptune request failed: {e}')
            raise NeptuneError(f'Neptune request failed: {e}')

        if response.status_code >= 400:
            logger.error(f'Neptune returned {response.status_code}: {response.text[:500]}')
            raise NeptuneError(f'Neptune query failed with status {response.status_code}: {response.text[:500]}')

        try:
            payload = response.json()
        except ValueError as e:
            raise NeptuneError(f'Malformed Neptune response: {e}')

        results = payload.get('results', [])
        if not isinstance(results, list):
            raise NeptuneError(f'Unexpected Neptune results payload: {type(results).__name__}')

        logger.debug(f'Neptune query returned {len(results)} rows')
        return results

    def close(self):
        """Release the underlying HTTP connections."""
        if not self.closed:
            self.closed = True
            self.http.close()


class NeptuneClient:
    """Amazon Neptune client issuing openCypher statements over HTTPS with AWS authentication."""

    def __init__(self, config: NeptuneConfig):
        """
        Initialize Neptune client.

        Args:
            config: NeptuneConfig instance with connection parameters
        """
        self.config = config
        scheme = 'https' if config.use_ssl else 'http'
        endpoint = config.endpoint.split('://', 1)[1] if '://' in config.endpoint else config.endpoint
        self.url = f'{scheme}://{endpoint}:{config.port}/openCypher'

        logger.info(f'Initialized Neptune client for {self.url}')

    def sign(self, body: str) -> Dict[str, str]:
        """
        Build request headers, signing them with SigV4 when IAM auth is enabled.

        Args:
            body: URL-encoded request body

        Returns:
            Header dictionary for the POST request
        """
        headers = {'Content-Type': 'application/x-www-form-urlencoded'}
        if not self.config.iam_auth:
            return headers

        # Get AWS credentials
        credentials = Session().get_credentials()
        if credentials is None:
            raise NeptuneError('No AWS credentials found')
        creds = credentials.get_frozen_credentials()

        # Get region
        region = Session().region_name or self.config.region or 'us-east-1'

        request = AWSRequest(method='POST', url=self.url, data=body, headers=headers)
        SigV4Auth(creds, 'neptune-db', region).add_auth(request)
        return dict(request.headers.items())

    def session(self) -> NeptuneSession:
        """Open a new session; the caller owns closing it."""
        return NeptuneSession(self)

    def health_check(self) -> bool:
        """
        Perform a health check on the Neptune service.

        Returns:
            True if service is healthy, False otherwise
        """
        session = self.session()
        try:
            session.run('RETURN 1 AS ok')
            return True
        except NeptuneError as e:
            logger.error(f'Neptune health check failed: {e}')
            return False
        finally:
            session.close()
