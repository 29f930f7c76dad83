"""
deputize - Keep on-call groups in sync with the PagerDuty schedule.

This package reconciles the membership of LDAP groups, Gitlab groups and
Slack channel topics against the users currently on call.
"""

__version__ = "2.0.0"
__author__ = "Deputize Maintainers"
