# /botrix/config/strings.py

# This file contains all user-facing strings produced by the flow engine and
# the conversation service, so they can be changed or localized in one place.

# Turn-level failures
FLOW_ERROR_RESPONSE = "I'm sorry, there was an error processing your request."
NODE_ERROR_RESPONSE = "I'm sorry, I encountered an error."

# Node outcomes
CONDITION_MET = "Condition met"
CONDITION_NOT_MET = "Condition not met"
ACTION_EXECUTED = "Action executed"
API_CALL_SUCCESSFUL = "API call successful"
API_CALL_FAILED = "API call failed"

# Default flow skeleton
WELCOME_TITLE = "Welcome Message"
WELCOME_MESSAGE = "Hello! How can I help you today?"
FALLBACK_TITLE = "Fallback Message"
FALLBACK_MESSAGE = "I'm sorry, I didn't understand that. Can you please rephrase?"

# Webhook connectivity test
WEBHOOK_TEST_TEXT = "Webhook connectivity test"
