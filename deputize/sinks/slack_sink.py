"""
Slack channel topic sink.

The on-call list lives at the start of a channel topic, before the first
'|' delimiter, as user mentions:

    On-Call: <@U012AB>, <@U034CD> | Runbooks: https://wiki/oncall

Everything after the delimiter is preserved unchanged. A change is written
with a single conversations.setTopic call, optionally followed by a message
to the channel.
"""

import re
import logging
from typing import Dict, List, Any, FrozenSet, Iterable

from deputize.diff import index_identities
from deputize.errors import SinkError, SnapshotUnavailable
from deputize.http_client import RestClient, APIError, DEFAULT_TIMEOUT
from deputize.logging_setup import audit_logger
from deputize.models import ADD, REMOVE, MutationOutcome, MutationPlan, MutationResult
from .base import SinkAdapter

logger = logging.getLogger(__name__)

SLACK_API_URL = 'https://slack.com/api'
TOPIC_DELIMITER = '|'
MENTION_PATTERN = re.compile(r'<@([UW][A-Z0-9]+)>')


class SlackAPIError(APIError):
    """Raised when the Slack Web API answers ok=false."""
    pass


def split_topic(topic: str):
    """Split a topic into the on-call part and the preserved remainder."""
    if TOPIC_DELIMITER in topic:
        head, rest = topic.split(TOPIC_DELIMITER, 1)
        return head, rest
    return topic, None


def render_topic(members: Iterable[str], rest, prefix: str = 'On-Call: ') -> str:
    """
    Render the new channel topic.

    Args:
        members: Slack user IDs currently on call
        rest: Text after the delimiter in the old topic, or None
        prefix: Text placed before the mentions

    Returns:
        Topic string with the remainder of the old topic preserved
    """
    mentions = ', '.join(f"<@{uid}>" for uid in members)
    return f"{prefix}{mentions} {TOPIC_DELIMITER}{rest if rest is not None else ''}"


class SlackTopicSink(SinkAdapter):
    """Sink adapter writing the on-call list into one channel's topic."""

    def __init__(self, config: Dict[str, Any], secrets=None):
        super().__init__(config, secrets)

        self.channel = config['channel']
        self.post_message = config.get('post_message', False)
        self.topic_prefix = config.get('topic_prefix', 'On-Call: ')

        self.client = None
        self.topic = None

    @classmethod
    def from_config(cls, config: Dict[str, Any], secrets=None) -> List['SlackTopicSink']:
        """One adapter per configured channel."""
        sinks = []
        for channel in config.get('channels', []):
            channel_config = dict(config)
            channel_config['channel'] = channel
            channel_config['name'] = f"{config['name']}:{channel}"
            sinks.append(cls(channel_config, secrets))
        return sinks

    def open(self):
        token = self.secrets.slack_auth_token if self.secrets else None
        if not token:
            raise SinkError(f"{self.name}: no Slack auth token")

        self.client = RestClient(
            self.name,
            self.config.get('base_url', SLACK_API_URL),
            headers={'Authorization': f"Bearer {token}"},
            timeout=self.config.get('timeout', DEFAULT_TIMEOUT),
            verify_ssl=self.config.get('verify_ssl', True)
        )

    def close(self):
        if self.client:
            self.client.close_connection()
            self.client = None

    def _call(self, method: str, http_method: str = 'GET', **arguments) -> Dict[str, Any]:
        if http_method == 'GET':
            response = self.client.request('GET', f"/{method}", params=arguments)
        else:
            response = self.client.request(http_method, f"/{method}", body=arguments,
                                           headers={'Content-Type': 'application/json; charset=utf-8'})

        if not response.get('ok'):
            raise SlackAPIError(f"Slack {method} failed: {response.get('error', 'unknown_error')}")
        return response

    def lookup_identity(self, entry: str) -> List[str]:
        try:
            response = self._call('users.lookupByEmail', email=entry)
        except SlackAPIError as e:
            if 'users_not_found' in str(e):
                return []
            raise
        return [response['user']['id']]

    def read_snapshot(self) -> FrozenSet[str]:
        try:
            response = self._call('conversations.info', channel=self.channel)
        except APIError as e:
            raise SnapshotUnavailable(self.name, str(e))

        self.topic = response.get('channel', {}).get('topic', {}).get('value', '') or ''
        head, _ = split_topic(self.topic)
        members = frozenset(MENTION_PATTERN.findall(head))

        logger.info(f"Topic of {self.channel} lists {len(members)} on-call user(s): {', '.join(sorted(members))}")
        return members

    def apply(self, plan: MutationPlan) -> MutationResult:
        """Rewrite the topic with the new on-call list in one call."""
        result = MutationResult()
        if plan.empty:
            logger.debug(f"No changes for {self.name}")
            return result

        if self.topic is None:
            raise SinkError(f"{self.name}: topic unknown, read the snapshot first")

        head, rest = split_topic(self.topic)
        removing = set(index_identities(plan.to_remove))
        kept = [uid for uid in MENTION_PATTERN.findall(head) if uid.casefold() not in removing]
        members = sorted(index_identities(kept + list(plan.to_add)).values())
        new_topic = render_topic(members, rest, self.topic_prefix)

        outcomes = [(REMOVE, identity) for identity in plan.to_remove] + \
                   [(ADD, identity) for identity in plan.to_add]

        try:
            self._call('conversations.setTopic', 'POST', channel=self.channel, topic=new_topic)
        except APIError as e:
            logger.error(f"Failed to update topic of {self.channel}: {e}")
            for action, identity in outcomes:
                result.record(MutationOutcome(action, identity, str(e)))
                audit_logger.log_membership_change(self.name, action, identity, False)
            return result

        logger.info(f"Updated topic of {self.channel}: {new_topic}")
        self.topic = new_topic
        for action, identity in outcomes:
            result.record(MutationOutcome(action, identity))
            audit_logger.log_membership_change(self.name, action, identity, True)

        if self.post_message:
            self._post_change(split_topic(new_topic)[0].strip())

        return result

    def _post_change(self, text: str):
        try:
            self._call('chat.postMessage', 'POST', channel=self.channel, text=text)
        except APIError as e:
            logger.warning(f"Could not post on-call message to {self.channel}: {e}")
