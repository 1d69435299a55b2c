import pytest

from commhub.config import Channel
from commhub.core.exceptions import ConfigurationException
from commhub.tat.domain import DEFAULT_REMINDER, TATPolicy
from commhub.tat.infrastructure import TATPolicyManager

ESCALATION_YAML = """
escalation:
  title: "Overdue: {workflow_name}"
  notification: "{entity_id} is {overdue_minutes}m late"
  email_subject: "Overdue: {workflow_name}"
  email_body: "Dear {recipient_name}, {entity_id} is late."
  sms: "{entity_id} late by {overdue_minutes}m"
  whatsapp: "{entity_id} late"
action_path: "/ops/instances/{instance_id}"
"""


def test_missing_file_uses_defaults(tmp_path):
    manager = TATPolicyManager()

    policy = manager.load(tmp_path / "absent.yaml")

    assert policy == TATPolicy()
    assert manager.get_policy().reminder == DEFAULT_REMINDER


def test_file_overrides_one_section(tmp_path):
    path = tmp_path / "tat_policy.yaml"
    path.write_text(ESCALATION_YAML)

    policy = TATPolicyManager().load(path)

    assert policy.reminder == DEFAULT_REMINDER
    assert policy.escalation.for_channel(Channel.SMS) == "{entity_id} late by {overdue_minutes}m"
    assert policy.escalation.call == ""
    assert policy.action_url("https://hub.example.com/", "i-1") == "https://hub.example.com/ops/instances/i-1"


@pytest.mark.parametrize("content", [
    "escalation:\n  title: only a title\n",
    "reminder: [unbalanced\n",
])
def test_invalid_file_is_rejected(tmp_path, content):
    path = tmp_path / "tat_policy.yaml"
    path.write_text(content)

    with pytest.raises(ConfigurationException):
        TATPolicyManager().load(path)


def test_reload_keeps_last_good_policy(tmp_path):
    path = tmp_path / "tat_policy.yaml"
    path.write_text(ESCALATION_YAML)
    manager = TATPolicyManager()
    manager.load(path)

    path.write_text("escalation: 42\n")
    assert manager.reload() is False
    assert manager.policy.escalation.title == "Overdue: {workflow_name}"

    path.write_text('action_path: "/w/{instance_id}"\n')
    assert manager.reload() is True
    assert manager.policy.escalation == TATPolicy().escalation
    assert manager.policy.action_path == "/w/{instance_id}"


def test_reload_before_load():
    assert TATPolicyManager().reload() is False


def test_policy_requires_load():
    with pytest.raises(RuntimeError):
        TATPolicyManager().get_policy()
