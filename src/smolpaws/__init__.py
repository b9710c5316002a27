"""smolpaws: a GitHub App that answers @smolpaws mentions.

This package provides:
- Webhook ingress with signature verification and allow-list filtering
- GitHub App credential issuance and comment posting
- Queue-based dispatch with at-least-once delivery and delayed retry
- A runner service that replies directly or runs an LLM agent in a sandbox
- Sandbox reuse per pull request and repository workspace provisioning
"""
