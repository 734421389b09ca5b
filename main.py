from riss.scraper.run import _cli_entrypoint

if __name__ == "__main__":
    # Platform images run `python main.py`; input comes from the environment
    # or a local input.json.
    raise SystemExit(_cli_entrypoint())
