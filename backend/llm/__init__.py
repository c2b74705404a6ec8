# Question generation / grading service client
