from session import RestaurantContext, format_price

CALL_RULES = (
    "RULES:\n"
    "1. NEVER repeat a question the caller already answered. If they said they want to order, "
    "you are now in order-taking mode -- stay there.\n"
    "2. NEVER re-introduce yourself or re-greet after the first greeting.\n"
    "3. After adding an order item, say ONLY a short confirmation like \"Got it, one margherita\" "
    "or \"Added\". Then ask \"Anything else?\" ONCE.\n"
    "4. Do NOT read back the full order unless the caller asks or says they are done ordering.\n"
    "5. If the caller says \"that's it\", \"that's all\", or \"I'm done\", read back the FULL order "
    "with prices and total, then ask them to confirm.\n"
    "6. Keep every response under 2 sentences. This is a phone call, not a chat. Be brief.\n"
    "7. If you are unsure what has been ordered so far, use the get_current_order tool silently "
    "-- do NOT ask the caller to repeat themselves.\n"
    "8. Track the caller's name, preferences, and any details they mentioned throughout the call "
    "-- never ask for information they already gave you.\n"
    "9. When the caller is ordering, do NOT ask \"would you like to place an order?\" "
    "-- they already ARE ordering.\n"
    "10. After asking \"Anything else?\" once and getting no new items, move to confirmation. "
    "Do NOT loop."
)

CONVERSATION_FLOW = (
    "CONVERSATION FLOW:\n"
    "- Greet briefly -> Ask how you can help -> Take order / Make reservation / Answer question "
    "-> Confirm -> Say goodbye\n"
    "- Once in order-taking mode, STAY in order-taking mode until the caller says they are done.\n"
    "- Once in reservation mode, collect all details (name, date, time, party size) before confirming.\n"
    "- Never restart the flow. Never go backwards. Always move forward.\n\n"
    "When making a reservation, ask for: name, date, time, and party size."
)


def build_menu_text(restaurant: RestaurantContext) -> str:
    lines = []
    for item in restaurant.menu:
        line = f"- {item.name} ({format_price(item.price)}): {item.description or 'No description'}"
        if item.modifications:
            line += f" | Modifications: {', '.join(item.modifications)}"
        lines.append(line)
    return "\n".join(lines)


def compose_system_prompt(restaurant: RestaurantContext) -> str:
    if restaurant.system_prompt.strip():
        return restaurant.system_prompt

    intro = f"You are a phone assistant for {restaurant.name}"
    if restaurant.cuisine:
        intro += f", a {restaurant.cuisine} restaurant"
    intro += ". You are on a live phone call."

    return f"{intro}\n\n{CALL_RULES}\n\nMENU:\n{build_menu_text(restaurant)}\n\n{CONVERSATION_FLOW}"


def greeting_instructions(restaurant: RestaurantContext) -> str:
    return f'Say exactly this greeting to the caller: "{restaurant.greeting}"'
