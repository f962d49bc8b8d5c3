def handler(event, context, callback):
    """
    Reference callback-style handler.

    - event, context: ignored
    - callback: completion signal of shape callback(error, result)
    """
    callback(None, "hello world")
