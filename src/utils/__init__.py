"""
Utils package.

- `utils.db`: DynamoDB access for recurring patterns and the transactions they
  are detected from. Models persist through `to_dynamodb_item()` and
  `from_dynamodb_item()`; dates are ISO strings and booleans 'true'/'false'.
- `utils.logging_config`: root logger setup for Lambda entry points.
"""
