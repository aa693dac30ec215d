"""deepbuffer.inputs package

Adapters that ingest information from external sources and turn it into
``pending`` items for the batch summarizer.

Modules
-------
* slack – Poll conversation history of every connected Slack workspace; also
  send replies and list workspace members.
* web – Save a link with its Open Graph metadata (link pocket)."""
